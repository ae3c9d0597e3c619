"""AI-generated conversation turns."""

import logging
from typing import Any, Optional, Sequence

from .. import phrasings
from ..completion import CompletionBackend, CompletionBackendError, to_openai_messages
from ..context import SessionContext
from ..models import ChatMessage, ChatOption, ChatResponse, Position, Role
from ..style import StyleFormatter, strip_artificial_phrases

logger = logging.getLogger(__name__)

# Quick replies offered alongside AI text for the opening questions of each role.
CONTEXTUAL_OPTIONS: dict[tuple[Role, int], list[ChatOption]] = {
    (Role.FAMILY, 0): [
        ChatOption(id="parent", label="For my parent"),
        ChatOption(id="spouse", label="For my spouse"),
        ChatOption(id="child", label="For my child"),
        ChatOption(id="other", label="Someone else"),
    ],
    (Role.FAMILY, 1): [
        ChatOption(id="daily_activities", label="Help with daily activities"),
        ChatOption(id="medical", label="Medical care"),
        ChatOption(id="companionship", label="Companionship"),
        ChatOption(id="specialized", label="Specialized care"),
    ],
    (Role.PROFESSIONAL, 0): [
        ChatOption(id="home_care", label="Home care"),
        ChatOption(id="medical_care", label="Medical care"),
        ChatOption(id="therapy", label="Therapy"),
        ChatOption(id="specialized", label="Specialized care"),
    ],
    (Role.PROFESSIONAL, 1): [
        ChatOption(id="0-2", label="0-2 years"),
        ChatOption(id="3-5", label="3-5 years"),
        ChatOption(id="5-10", label="5-10 years"),
        ChatOption(id="10+", label="10+ years"),
    ],
}

SHORT_TRANSCRIPT = 3


class AIFlowError(RuntimeError):
    """Raised for any failure to produce an AI turn."""


class AIFlowAdapter:
    """Builds the prompt, calls the completion backend and post-processes the reply."""

    def __init__(self, backend: CompletionBackend, formatter: Optional[StyleFormatter] = None):
        self.backend = backend
        self.formatter = formatter or StyleFormatter()

    def build_system_prompt(
        self,
        role: Optional[Role],
        position: Position,
        message_count: int,
        known_answers: Optional[dict[str, Any]] = None,
    ) -> str:
        greetings = "\", \"".join(phrasings.GREETINGS)
        acknowledgments = "\", \"".join(phrasings.ACKNOWLEDGMENTS)
        lines = [
            "You are Tavara, a friendly assistant for Tavara.care, a platform connecting "
            "families with caregivers in Trinidad & Tobago.",
            "",
            "Use warm, conversational language with occasional local phrases from Trinidad & "
            f"Tobago like \"{greetings}\" or \"{acknowledgments}\" to sound authentic but not overdone.",
            "",
        ]
        if role is not None:
            lines.append(f"The user has indicated they are a {role.value}.")
            lines.append(phrasings.ROLE_INTENTS[role])

        lines.extend([
            "You are currently helping them through the registration process. We are at "
            f"section {position.section_index + 1}, question {position.question_index + 1}.",
            "Keep your responses concise (1-3 sentences), friendly, and focused on gathering "
            "relevant information.",
            "Do NOT list multiple questions at once. Focus on ONE question at a time.",
            "DO NOT use phrases like \"how would you like to engage with us today\" or other "
            "artificial corporate language.",
        ])

        if known_answers:
            lines.append("")
            lines.append("Already known about this user (do not ask for these again):")
            for key, value in known_answers.items():
                if isinstance(value, list):
                    value = ", ".join(str(item) for item in value)
                lines.append(f"- {key}: {value}")

        if role is None and message_count <= SHORT_TRANSCRIPT:
            lines.append("")
            lines.append(
                "Since this is the beginning of our conversation, help the user identify which "
                "role they fall into (family, professional, or community) so we can direct them "
                "to the right registration flow. Be warm and welcoming."
            )
        return "\n".join(lines)

    def contextual_options(
        self, role: Optional[Role], position: Position, message_count: int
    ) -> Optional[list[ChatOption]]:
        if role is None:
            if message_count <= SHORT_TRANSCRIPT:
                return list(phrasings.AI_ROLE_OPTIONS)
            return None
        if position.section_index != 0:
            return None
        options = CONTEXTUAL_OPTIONS.get((role, position.question_index))
        return list(options) if options else None

    async def respond(
        self,
        messages: Sequence[ChatMessage],
        context: SessionContext,
        role: Optional[Role],
        position: Position,
        temperature: float,
        known_answers: Optional[dict[str, Any]] = None,
    ) -> ChatResponse:
        """Produce one AI turn; every failure surfaces as ``AIFlowError``."""
        system_prompt = self.build_system_prompt(role, position, len(messages), known_answers)
        payload = [{"role": "system", "content": system_prompt}, *to_openai_messages(messages)]

        try:
            result = await self.backend.get_chat_completion(
                messages=payload,
                session_id=context.session_id,
                user_role=role.value if role else None,
                temperature=temperature,
            )
        except CompletionBackendError as e:
            raise AIFlowError(str(e)) from e

        if result.error:
            raise AIFlowError(f"AI service error: {result.error}")

        text = strip_artificial_phrases(result.message)
        if not text:
            raise AIFlowError("AI service returned an empty message")

        message = self.formatter.apply(text, context)
        if context.is_repeat_message(message):
            logger.debug(f"Rephrasing repeated AI reply for session {context.session_id[:8]}")
            message = self.formatter.rephrase(message, context)
        context.set_last_message(message)

        return ChatResponse(
            message=message,
            options=self.contextual_options(role, position, len(messages)),
        )
