"""Abstract repository interfaces."""

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..models import Answer, Role


class RepositoryError(RuntimeError):
    """Raised when a storage backend fails."""


class ResponseRepository(ABC):
    """Abstract interface for collected answers and questionnaire progress."""

    @abstractmethod
    async def save_chat_response(
        self,
        session_id: str,
        role: Role,
        section_index: int,
        question_key: str,
        value: Answer,
    ) -> None:
        """Record one committed answer."""
        pass

    @abstractmethod
    async def update_chat_progress(
        self,
        session_id: str,
        role: Role,
        section_index: int,
        status: str,
        question_key: str,
        form_data: dict[str, Any],
    ) -> None:
        """Upsert the progress row of a session."""
        pass

    @abstractmethod
    async def get_session_responses(self, session_id: str) -> list[dict]:
        """Get every answer recorded for a session, oldest first."""
        pass

    @abstractmethod
    async def get_chat_progress(self, session_id: str) -> Optional[dict]:
        """Get the progress row of a session."""
        pass


class SessionStore(ABC):
    """Abstract key-value blob store for per-session chat state."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get a blob, or None if the key is unknown."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable blob."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key; unknown keys are ignored."""
        pass


def session_key(name: str, session_id: str) -> str:
    return f"{name}:{session_id}"
