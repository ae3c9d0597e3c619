"""Supabase repository implementation."""

from datetime import datetime, timezone
from typing import Any, Optional

from supabase import Client, create_client

from ..models import Answer, Role
from .base import RepositoryError, ResponseRepository, SessionStore


class SupabaseClientManager:
    """Manages Supabase client lifecycle."""

    def __init__(self, url: str, key: str):
        self.url = url
        self.key = key
        self._client: Optional[Client] = None

    def get_client(self) -> Client:
        """Get or create Supabase client."""
        if self._client is None:
            self._client = create_client(self.url, self.key)
        return self._client


class SupabaseResponseRepository(ResponseRepository):
    """Supabase-backed response repository."""

    def __init__(self, client_manager: SupabaseClientManager):
        self.client_manager = client_manager

    async def save_chat_response(
        self,
        session_id: str,
        role: Role,
        section_index: int,
        question_key: str,
        value: Answer,
    ) -> None:
        client = self.client_manager.get_client()
        try:
            client.table("chatbot_responses").insert({
                "session_id": session_id,
                "role": role.value,
                "section": section_index,
                "question_id": question_key,
                "response": value,
            }).execute()
        except Exception as e:
            raise RepositoryError(f"Failed to save chat response: {e}") from e

    async def update_chat_progress(
        self,
        session_id: str,
        role: Role,
        section_index: int,
        status: str,
        question_key: str,
        form_data: dict[str, Any],
    ) -> None:
        client = self.client_manager.get_client()
        try:
            client.table("chatbot_progress").upsert(
                {
                    "session_id": session_id,
                    "role": role.value,
                    "current_section": section_index,
                    "status": status,
                    "last_question_id": question_key,
                    "form_data": form_data,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                },
                on_conflict="session_id",
            ).execute()
        except Exception as e:
            raise RepositoryError(f"Failed to update chat progress: {e}") from e

    async def get_session_responses(self, session_id: str) -> list[dict]:
        client = self.client_manager.get_client()
        try:
            response = (
                client.table("chatbot_responses")
                .select("*")
                .eq("session_id", session_id)
                .order("created_at")
                .execute()
            )
        except Exception as e:
            raise RepositoryError(f"Failed to fetch chat responses: {e}") from e
        return list(response.data)

    async def get_chat_progress(self, session_id: str) -> Optional[dict]:
        client = self.client_manager.get_client()
        try:
            response = (
                client.table("chatbot_progress")
                .select("*")
                .eq("session_id", session_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise RepositoryError(f"Failed to fetch chat progress: {e}") from e
        if response.data:
            return response.data[0]
        return None


class SupabaseSessionStore(SessionStore):
    """Supabase-backed session blob store (table ``chat_session_store``)."""

    def __init__(self, client_manager: SupabaseClientManager):
        self.client_manager = client_manager

    async def get(self, key: str) -> Optional[Any]:
        client = self.client_manager.get_client()
        try:
            response = (
                client.table("chat_session_store")
                .select("value")
                .eq("key", key)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise RepositoryError(f"Failed to read {key}: {e}") from e
        if response.data:
            return response.data[0]["value"]
        return None

    async def set(self, key: str, value: Any) -> None:
        client = self.client_manager.get_client()
        try:
            client.table("chat_session_store").upsert(
                {
                    "key": key,
                    "value": value,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                },
                on_conflict="key",
            ).execute()
        except Exception as e:
            raise RepositoryError(f"Failed to write {key}: {e}") from e

    async def delete(self, key: str) -> None:
        client = self.client_manager.get_client()
        try:
            client.table("chat_session_store").delete().eq("key", key).execute()
        except Exception as e:
            raise RepositoryError(f"Failed to delete {key}: {e}") from e
