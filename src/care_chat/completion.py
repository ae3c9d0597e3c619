"""AI completion backend used by the AI flow."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional

from .models import ChatMessage
from .repository.supabase import SupabaseClientManager

logger = logging.getLogger(__name__)


class CompletionBackendError(RuntimeError):
    """Raised when the completion backend cannot be reached or answers garbage."""


@dataclass(frozen=True)
class CompletionResult:
    """Reply of the completion backend; ``error`` is set when the backend reports a failure."""
    message: str = ""
    error: Optional[str] = None


def to_openai_messages(messages: Iterable[ChatMessage]) -> list[dict]:
    """Convert transcript messages to chat-completion ``{role, content}`` dicts."""
    return [
        {"role": "user" if message.is_user else "assistant", "content": message.content}
        for message in messages
        if message.content
    ]


class CompletionBackend(ABC):
    """Abstract interface for chat completion."""

    @abstractmethod
    async def get_chat_completion(
        self,
        messages: list[dict],
        session_id: str,
        user_role: Optional[str],
        temperature: float,
    ) -> CompletionResult:
        """Generate the next assistant message for ``messages``."""
        pass


class SupabaseCompletionBackend(CompletionBackend):
    """Completion through the ``chat-gpt`` Supabase edge function."""

    def __init__(
        self,
        client_manager: SupabaseClientManager,
        function_name: str = "chat-gpt",
        max_tokens: int = 300,
    ):
        self.client_manager = client_manager
        self.function_name = function_name
        self.max_tokens = max_tokens

    async def get_chat_completion(
        self,
        messages: list[dict],
        session_id: str,
        user_role: Optional[str],
        temperature: float,
    ) -> CompletionResult:
        client = self.client_manager.get_client()
        body = {
            "messages": messages,
            "sessionId": session_id,
            "temperature": temperature,
            "maxTokens": self.max_tokens,
        }
        if user_role:
            body["userRole"] = user_role

        logger.debug(f"Invoking {self.function_name} with {len(messages)} messages")
        try:
            raw = client.functions.invoke(self.function_name, invoke_options={"body": body})
        except Exception as e:
            raise CompletionBackendError(f"{self.function_name} invocation failed: {e}") from e

        return self._parse(raw)

    def _parse(self, raw) -> CompletionResult:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as e:
                raise CompletionBackendError(f"Malformed completion payload: {e}") from e
        if not isinstance(raw, dict):
            raise CompletionBackendError(f"Unexpected completion payload type {type(raw).__name__}")

        return CompletionResult(
            message=str(raw.get("message") or ""),
            error=raw.get("error"),
        )


class UnavailableCompletionBackend(CompletionBackend):
    """Stand-in used when no Supabase project is configured; every call fails."""

    async def get_chat_completion(
        self,
        messages: list[dict],
        session_id: str,
        user_role: Optional[str],
        temperature: float,
    ) -> CompletionResult:
        raise CompletionBackendError("AI completion backend is not configured")
