"""
Shared pytest fixtures for the care chat tests.

Provides:
- In-memory response repository and session store (optionally failing)
- A completion backend that replays queued replies or errors
- A recording contact channel setup
- State machine factory wired to all of the above with a seeded RNG
"""

import random
from typing import Any, Optional

import pytest

from care_chat.completion import CompletionBackend, CompletionBackendError, CompletionResult
from care_chat.contact import ContactChannel
from care_chat.context import SessionContext
from care_chat.engine import AIFlowAdapter, ConversationOrchestrator, ScriptedFlowEngine
from care_chat.models import ChatConfig, ChatMode, ChatSession, Role
from care_chat.prefill import PrefillBridge
from care_chat.repository.base import RepositoryError, ResponseRepository, SessionStore
from care_chat.state_machine import ChatStateMachine
from care_chat.style import PlainFormatter

SESSION_ID = "abcd1234-0000-4000-8000-000000000000"


class InMemoryResponseRepository(ResponseRepository):
    """Response sink kept in lists; ``fail`` makes every call raise."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.responses: list[dict] = []
        self.progress: dict[str, dict] = {}

    def _check(self):
        if self.fail:
            raise RepositoryError("storage offline")

    async def save_chat_response(self, session_id, role, section_index, question_key, value):
        self._check()
        self.responses.append({
            "session_id": session_id,
            "role": role.value,
            "section": section_index,
            "question_id": question_key,
            "response": value,
        })

    async def update_chat_progress(self, session_id, role, section_index, status, question_key, form_data):
        self._check()
        self.progress[session_id] = {
            "session_id": session_id,
            "role": role.value,
            "current_section": section_index,
            "status": status,
            "last_question_id": question_key,
            "form_data": dict(form_data),
        }

    async def get_session_responses(self, session_id):
        self._check()
        return [row for row in self.responses if row["session_id"] == session_id]

    async def get_chat_progress(self, session_id):
        self._check()
        return self.progress.get(session_id)


class InMemorySessionStore(SessionStore):
    """Key-value store kept in a dict; ``fail`` makes every call raise."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.data: dict[str, Any] = {}

    async def get(self, key):
        if self.fail:
            raise RepositoryError("storage offline")
        return self.data.get(key)

    async def set(self, key, value):
        if self.fail:
            raise RepositoryError("storage offline")
        self.data[key] = value

    async def delete(self, key):
        if self.fail:
            raise RepositoryError("storage offline")
        self.data.pop(key, None)


class QueuedCompletionBackend(CompletionBackend):
    """Replays queued replies; an exception instance in the queue is raised instead."""

    def __init__(self, replies: Optional[list] = None, default: Any = "How can I help you today?"):
        self.replies = list(replies or [])
        self.default = default
        self.calls: list[dict] = []

    async def get_chat_completion(self, messages, session_id, user_role, temperature):
        self.calls.append({
            "messages": messages,
            "session_id": session_id,
            "user_role": user_role,
            "temperature": temperature,
        })
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, CompletionResult):
            return reply
        return CompletionResult(message=reply)


def failing_backend(count: int = 100) -> QueuedCompletionBackend:
    return QueuedCompletionBackend([CompletionBackendError("timeout")] * count)


@pytest.fixture
def rng():
    return random.Random(7)


@pytest.fixture
def context(rng):
    return SessionContext(SESSION_ID, rng=rng)


@pytest.fixture
def scripted():
    return ScriptedFlowEngine()


@pytest.fixture
def response_repo():
    return InMemoryResponseRepository()


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def backend():
    return QueuedCompletionBackend()


@pytest.fixture
def contact():
    return ContactChannel("1 868 786 5357")


@pytest.fixture
def make_machine(response_repo, session_store, backend, contact):
    """Factory for a wired ChatStateMachine; keyword overrides replace collaborators."""

    def _create(
        config: Optional[ChatConfig] = None,
        completion_backend: Optional[CompletionBackend] = None,
        repo: Optional[ResponseRepository] = None,
        store: Optional[SessionStore] = None,
        channel: Optional[ContactChannel] = None,
        seed: int = 7,
    ) -> ChatStateMachine:
        repo = repo or response_repo
        store = store or session_store
        orchestrator = ConversationOrchestrator(
            ScriptedFlowEngine(),
            AIFlowAdapter(completion_backend or backend, formatter=PlainFormatter()),
        )
        return ChatStateMachine(
            session=ChatSession(session_id=SESSION_ID),
            context=SessionContext(SESSION_ID, rng=random.Random(seed)),
            orchestrator=orchestrator,
            response_repository=repo,
            session_store=store,
            prefill=PrefillBridge(store, repo, base_url="https://tavara.care"),
            contact=channel or contact,
            config=config or ChatConfig(mode=ChatMode.SCRIPTED),
        )

    return _create


@pytest.fixture
async def family_machine(make_machine):
    """Scripted machine that has picked the family role and sits on the first question."""
    machine = make_machine()
    await machine.initialize_chat()
    await machine.handle_role_selection(Role.FAMILY.value)
    return machine
