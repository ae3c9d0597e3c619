"""Chooses which engine produces the next bot turn."""

import logging
from enum import Enum
from typing import Any, Optional, Sequence

from .. import phrasings
from ..context import RetryState, SessionContext
from ..models import ChatConfig, ChatMessage, ChatMode, ChatResponse, Position, Role
from .ai_flow import AIFlowAdapter, AIFlowError
from .scripted import ScriptedFlowEngine

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = (
    "I'm having a little trouble right now. Let's keep it simple: "
    "which of these best describes you?"
)


class FallbackDecision(str, Enum):
    """What to return after an AI attempt."""
    AI = "ai"
    SCRIPTED = "scripted"
    APOLOGY = "apology"


def decide_fallback(
    error: Optional[str], retry: RetryState, config: ChatConfig
) -> tuple[FallbackDecision, RetryState]:
    """Next retry state and the response source for one AI attempt.

    ``error`` is None when the attempt succeeded.
    """
    if error is None:
        return FallbackDecision.AI, retry.record_success()

    retry = retry.record_failure(error)
    if retry.should_degrade(config):
        return FallbackDecision.SCRIPTED, retry
    return FallbackDecision.APOLOGY, retry


def apology_response() -> ChatResponse:
    return ChatResponse(
        message=APOLOGY_MESSAGE,
        options=[*phrasings.ROLE_OPTIONS, phrasings.START_OVER_OPTION],
    )


class ConversationOrchestrator:
    """Routes each turn to the scripted engine or the AI adapter and never raises."""

    def __init__(
        self,
        scripted: ScriptedFlowEngine,
        ai_flow: AIFlowAdapter,
        always_show_options: bool = False,
    ):
        self.scripted = scripted
        self.ai_flow = ai_flow
        self.always_show_options = always_show_options

    async def process_conversation(
        self,
        messages: Sequence[ChatMessage],
        context: SessionContext,
        role: Optional[Role],
        position: Position,
        config: ChatConfig,
        known_answers: Optional[dict[str, Any]] = None,
    ) -> ChatResponse:
        if config.mode == ChatMode.SCRIPTED or not messages:
            return self.scripted.respond(messages, context, role, position)

        if role is not None and not position.is_first_slot:
            return self.scripted.registration_flow(role, position, context)

        if config.mode in (ChatMode.AI, ChatMode.HYBRID):
            return await self._ai_turn(messages, context, role, position, config, known_answers)

        return self.scripted.respond(messages, context, role, position)

    async def _ai_turn(
        self,
        messages: Sequence[ChatMessage],
        context: SessionContext,
        role: Optional[Role],
        position: Position,
        config: ChatConfig,
        known_answers: Optional[dict[str, Any]],
    ) -> ChatResponse:
        response = None
        error = None
        try:
            response = await self.ai_flow.respond(
                messages,
                context,
                role,
                position,
                temperature=config.temperature,
                known_answers=known_answers,
            )
        except AIFlowError as e:
            error = str(e) or type(e).__name__

        decision, context.retry = decide_fallback(error, context.retry, config)

        match decision:
            case FallbackDecision.AI:
                if self.always_show_options and role is None and not response.options:
                    return ChatResponse(message=response.message, options=list(phrasings.ROLE_OPTIONS))
                return response
            case FallbackDecision.SCRIPTED:
                logger.warning(
                    f"[SESSION {context.session_id[:8]}] AI failed {context.retry.count} times "
                    f"in a row, using scripted flow: {error}"
                )
                return self.scripted.respond(messages, context, role, position)
            case FallbackDecision.APOLOGY:
                logger.warning(
                    f"[SESSION {context.session_id[:8]}] AI failed "
                    f"(attempt {context.retry.count}): {error}"
                )
                return apology_response()
