"""Local JSON file repository implementation."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiofiles

from ..models import Answer, Role
from .base import RepositoryError, ResponseRepository, SessionStore


class JsonFile:
    """One JSON document on disk, read and rewritten whole."""

    def __init__(self, file_path: Path, empty):
        self.file_path = file_path
        self.empty = empty

    async def read(self):
        if not self.file_path.exists():
            return self.empty()
        try:
            async with aiofiles.open(self.file_path, "r") as f:
                content = await f.read()
            return json.loads(content) if content else self.empty()
        except (OSError, json.JSONDecodeError) as e:
            raise RepositoryError(f"Failed to read {self.file_path}: {e}") from e

    async def write(self, data) -> None:
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(self.file_path, "w") as f:
                await f.write(json.dumps(data, indent=2, default=str))
        except OSError as e:
            raise RepositoryError(f"Failed to write {self.file_path}: {e}") from e


class LocalResponseRepository(ResponseRepository):
    """JSON file-based response repository."""

    def __init__(self, data_path: str):
        self.responses = JsonFile(Path(data_path) / "responses.json", list)
        self.progress = JsonFile(Path(data_path) / "progress.json", dict)

    async def save_chat_response(
        self,
        session_id: str,
        role: Role,
        section_index: int,
        question_key: str,
        value: Answer,
    ) -> None:
        data = await self.responses.read()
        data.append({
            "session_id": session_id,
            "role": role.value,
            "section": section_index,
            "question_id": question_key,
            "response": value,
            "created_at": datetime.now(timezone.utc).isoformat(),
        })
        await self.responses.write(data)

    async def update_chat_progress(
        self,
        session_id: str,
        role: Role,
        section_index: int,
        status: str,
        question_key: str,
        form_data: dict[str, Any],
    ) -> None:
        data = await self.progress.read()
        data[session_id] = {
            "session_id": session_id,
            "role": role.value,
            "current_section": section_index,
            "status": status,
            "last_question_id": question_key,
            "form_data": form_data,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        await self.progress.write(data)

    async def get_session_responses(self, session_id: str) -> list[dict]:
        data = await self.responses.read()
        return [item for item in data if item["session_id"] == session_id]

    async def get_chat_progress(self, session_id: str) -> Optional[dict]:
        data = await self.progress.read()
        return data.get(session_id)


class LocalSessionStore(SessionStore):
    """JSON file-based session blob store."""

    def __init__(self, data_path: str):
        self.file = JsonFile(Path(data_path) / "session_store.json", dict)

    async def get(self, key: str) -> Optional[Any]:
        data = await self.file.read()
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        data = await self.file.read()
        data[key] = value
        await self.file.write(data)

    async def delete(self, key: str) -> None:
        data = await self.file.read()
        if data.pop(key, None) is not None:
            await self.file.write(data)
