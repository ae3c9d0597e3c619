"""Hands collected chat answers over to the registration form."""

import logging
import re
from typing import Any, Iterable, Optional
from urllib.parse import urlencode

from .flows import DEFAULT_QUESTION_TABLE, QuestionTable
from .models import ChatMessage, Position, Role, now_ms
from .repository.base import RepositoryError, ResponseRepository, SessionStore, session_key

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_REGEX = re.compile(r"(\+?\d[\d\s\-()]{6,}\d)")
NAME_REGEX = re.compile(r"\bmy name is ([A-Za-z][A-Za-z\-']*(?:\s+[A-Za-z][A-Za-z\-']*)?)", re.IGNORECASE)

# Question id fragments copied to top-level prefill fields, checked in order.
FIELD_MAPPINGS = [
    ("first_name", "first_name"),
    ("full_name", "first_name"),
    ("last_name", "last_name"),
    ("email", "email"),
    ("phone", "phone"),
    ("location", "location"),
    ("address", "location"),
]


class PrefillError(RuntimeError):
    """Raised when prefill data cannot be generated or stored."""


class PrefillBridge:
    """Builds prefill payloads and registration URLs."""

    def __init__(
        self,
        session_store: SessionStore,
        response_repository: ResponseRepository,
        base_url: str = "",
        table: QuestionTable = DEFAULT_QUESTION_TABLE,
    ):
        self.session_store = session_store
        self.response_repository = response_repository
        self.base_url = base_url.rstrip("/")
        self.table = table

    def registration_path(self, role: Optional[Role]) -> str:
        if role is None:
            return f"{self.base_url}/registration"
        return f"{self.base_url}/registration/{role.value}"

    def _question_id(self, role: Role, question_key: str) -> tuple[Optional[int], str]:
        position = Position.from_key(question_key)
        if position is None:
            return None, question_key
        question = self.table.get_question_at(role, position)
        return position.section_index, question.id if question else question_key

    def build_prefill(
        self,
        session_id: str,
        role: Role,
        messages: Iterable[ChatMessage],
        answers: dict[str, Any],
    ) -> dict:
        """Prefill payload from committed answers and free-text patterns in user messages."""
        data: dict[str, Any] = {
            "session_id": session_id,
            "role": role.value,
            "responses": {},
            "generated_at": now_ms(),
        }

        for question_key, value in answers.items():
            section_index, question_id = self._question_id(role, question_key)
            if section_index is None:
                continue
            data["responses"].setdefault(str(section_index), {})[question_id] = value

            if isinstance(value, list):
                continue
            for fragment, field_name in FIELD_MAPPINGS:
                if fragment in question_id and field_name not in data:
                    data[field_name] = value
                    break

        for message in messages:
            if not message.is_user:
                continue
            if "email" not in data:
                email = EMAIL_REGEX.search(message.content)
                if email:
                    data["email"] = email.group(0)
            if "phone" not in data:
                phone = PHONE_REGEX.search(message.content)
                if phone:
                    data["phone"] = phone.group(1).strip()
            if "first_name" not in data:
                name = NAME_REGEX.search(message.content)
                if name:
                    parts = name.group(1).split()
                    data["first_name"] = parts[0]
                    if len(parts) > 1 and "last_name" not in data:
                        data["last_name"] = parts[1]

        return data

    async def generate_prefill(
        self,
        session_id: str,
        role: Role,
        messages: Iterable[ChatMessage],
        form_data: dict[str, Any],
    ) -> dict:
        """Build the payload from stored and in-memory answers and store it under ``prefill:<sid>``."""
        answers: dict[str, Any] = {}
        try:
            for row in await self.response_repository.get_session_responses(session_id):
                answers[row["question_id"]] = row["response"]
        except RepositoryError as e:
            logger.warning(f"[SESSION {session_id[:8]}] Stored answers unavailable for prefill: {e}")
        answers.update(form_data)

        data = self.build_prefill(session_id, role, messages, answers)
        try:
            await self.session_store.set(session_key("prefill", session_id), data)
        except RepositoryError as e:
            raise PrefillError(f"Failed to store prefill data: {e}") from e
        return data

    async def prepare_prefill_data_and_get_registration_url(
        self,
        session_id: str,
        role: Role,
        messages: Iterable[ChatMessage],
        form_data: dict[str, Any],
        auto_submit: bool = False,
    ) -> str:
        await self.generate_prefill(session_id, role, messages, form_data)
        params = {"session": session_id}
        if auto_submit:
            params["auto_submit"] = "true"
        return f"{self.registration_path(role)}?{urlencode(params)}"
