"""Scripted conversation flow and the script-driven registration Q&A."""

import logging
from typing import Optional, Sequence

from .. import phrasings
from ..context import SessionContext
from ..flows import DEFAULT_QUESTION_TABLE, Question, QuestionTable
from ..models import (
    ChatMessage,
    ChatOption,
    ChatResponse,
    ControlAction,
    FieldType,
    Position,
    QuestionType,
    Role,
)
from ..style import lower_first
from ..validation import detect_field_type_from_question

logger = logging.getLogger(__name__)

CLOSING_OPTIONS = [
    ChatOption(id=ControlAction.CONTINUE.value, label="Continue"),
    ChatOption(id=ControlAction.HAVE_MORE_QUESTIONS.value, label="I have more questions"),
]

LOOKUP_MISS_OPTIONS = [
    phrasings.START_OVER_OPTION,
    ChatOption(id=ControlAction.PROCEED_TO_REGISTRATION.value, label="Fill out registration form"),
]


def question_options(question: Question) -> Optional[list[ChatOption]]:
    """Quick replies for a script question, including the multi-select sentinel."""
    if question.type == QuestionType.CONFIRM:
        return list(phrasings.CONFIRM_OPTIONS)
    if not question.type.has_choices:
        return None
    options = list(question.options)
    if question.is_multi_select:
        options.append(phrasings.DONE_SELECTING_OPTION)
    return options


class ScriptedFlowEngine:
    """Deterministic responses driven by transcript length, role and script position."""

    def __init__(self, table: QuestionTable = DEFAULT_QUESTION_TABLE):
        self.table = table

    def respond(
        self,
        messages: Sequence[ChatMessage],
        context: SessionContext,
        role: Optional[Role],
        position: Position,
    ) -> ChatResponse:
        if role is not None and not position.is_first_slot:
            return self.registration_flow(role, position, context)

        if role is None:
            if len(messages) <= 2:
                return self.intro(context)
            return self.clarify(messages)

        if len(messages) <= 4:
            return ChatResponse(message=phrasings.ROLE_FOLLOWUPS[role])

        if self.table.get_question_at(role, position) is not None:
            return self.registration_flow(role, position, context, section_opener=False)

        return ChatResponse(
            message=(
                "Thank you for sharing all this information! It will help us better "
                "assist you with your needs."
            ),
            options=list(CLOSING_OPTIONS),
        )

    def intro(self, context: SessionContext) -> ChatResponse:
        message = context.pick("intro", phrasings.INTRO_MESSAGES)
        return ChatResponse(message=message, options=list(phrasings.ROLE_OPTIONS))

    def clarify(self, messages: Sequence[ChatMessage]) -> ChatResponse:
        last = messages[-1].content.lower() if messages else ""
        if "care" in last or "help" in last:
            message = "It sounds like you might be looking for caregiving assistance. Are you:"
        else:
            message = "Welcome to Tavara Care! How can I assist you today?"
        return ChatResponse(message=message, options=list(phrasings.ROLE_OPTIONS))

    def registration_flow(
        self,
        role: Role,
        position: Position,
        context: SessionContext,
        section_opener: bool = True,
    ) -> ChatResponse:
        """Next prompt for ``position`` in the role's script.

        Returns the completion prompt past the last section, a section
        transition past the end of a section, otherwise the question itself.
        """
        flow = self.table.get_flow(role)
        if flow is None:
            logger.warning(f"No registration script for role {role!r}")
            return ChatResponse(
                message="I'm not sure what to ask next. Let's try something else.",
                options=list(LOOKUP_MISS_OPTIONS),
            )

        total = len(flow.sections)
        if position.section_index >= total:
            return self.completion_prompt(role)

        section = flow.sections[position.section_index]
        if position.question_index >= len(section.questions):
            if position.section_index >= total - 1:
                return self.completion_prompt(role)
            return self.section_transition(role, position.section_index, position.section_index + 1)

        question = section.questions[position.question_index]
        message = self.question_message(question, context)
        if section_opener and position.question_index == 0:
            opener = context.pick("section_opener", phrasings.SECTION_OPENERS)
            message = f"{opener} {section.title.lower()}.\n\n{message}"
        return ChatResponse(message=message, options=question_options(question))

    def question_message(self, question: Question, context: SessionContext) -> str:
        intro = context.pick("question_intro", phrasings.QUESTION_INTROS)
        label = lower_first(question.label) if intro else question.label
        message = f"{intro}{label}"

        field_type = detect_field_type_from_question(question)
        if question.is_multi_select:
            message = f"{message} (Please select all that apply)"
        elif field_type == FieldType.EMAIL:
            message = f"{message} (example: name@example.com)"
        elif field_type == FieldType.PHONE:
            message = f"{message} (example: +1 868 123 4567)"
        elif question.id == "budget":
            message = f"{message} Please specify an hourly range (e.g., $20-30/hour) or say 'Negotiable'."
        return message

    def section_transition(self, role: Role, finished_index: int, next_index: int) -> ChatResponse:
        finished = self.table.get_section_title(role, finished_index)
        upcoming = self.table.get_section_title(role, next_index)
        return ChatResponse(
            message=(
                f"Great, that wraps up {finished.lower()}. "
                f"Next we'll go through {upcoming.lower()}."
            ),
            options=[phrasings.CONTINUE_OPTION],
        )

    def completion_prompt(self, role: Role) -> ChatResponse:
        return ChatResponse(
            message=(
                "Thanks for providing all this information! Based on your answers, we "
                f"recommend completing your {role.value} registration. Click below to continue "
                "to the registration form with your data pre-filled."
            ),
            options=list(phrasings.COMPLETION_OPTIONS),
        )
