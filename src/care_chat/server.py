"""WebSocket server for the care chat assistant."""

import asyncio
import json
import logging
import random
import uuid
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from .completion import CompletionBackend
from .config.settings import Settings
from .contact import ContactChannel
from .context import SessionContext
from .engine import AIFlowAdapter, ConversationOrchestrator, ScriptedFlowEngine
from .flows import DEFAULT_QUESTION_TABLE, QuestionTable
from .models import ChatConfig, ChatSession, ChatTurn, Role
from .prefill import PrefillBridge
from .repository.base import RepositoryError, ResponseRepository, SessionStore
from .state_machine import ChatStateMachine

logger = logging.getLogger(__name__)

CONFIG_KEY = "chat_config"
CONFIG_FIELDS = ("mode", "temperature", "fallback_threshold")


def turn_frames(turn: ChatTurn, history: Optional[list] = None) -> list[dict]:
    """Server frames for everything a turn produced."""
    frames = []
    if history is not None:
        frames.append({"type": "history", "messages": [message.to_dict() for message in history]})
    else:
        frames.extend({"type": "message", **message.to_dict()} for message in turn.messages)
    if turn.validation_error:
        frames.append({
            "type": "validation_error",
            "error": turn.validation_error,
            "hint": turn.validation_hint,
        })
    frames.extend({"type": event.type.value, **event.data} for event in turn.events)
    return frames


def session_id_from_path(path: str) -> str:
    values = parse_qs(urlsplit(path).query).get("session")
    if values and values[0].strip():
        return values[0].strip()
    return str(uuid.uuid4())


class CareChatServer:
    """WebSocket server running one chat state machine per connection."""

    def __init__(
        self,
        settings: Settings,
        response_repo: ResponseRepository,
        session_store: SessionStore,
        completion_backend: CompletionBackend,
        table: QuestionTable = DEFAULT_QUESTION_TABLE,
    ):
        self.settings = settings
        self.response_repo = response_repo
        self.session_store = session_store
        self.table = table
        self.config = settings.chat.to_config()
        self.orchestrator = ConversationOrchestrator(
            ScriptedFlowEngine(table),
            AIFlowAdapter(completion_backend),
            always_show_options=settings.chat.always_show_options,
        )
        self.prefill = PrefillBridge(
            session_store, response_repo, settings.registration.base_url, table
        )
        self.contact = ContactChannel(
            settings.contact.whatsapp_number, settings.contact.contact_form_event
        )
        self.active_sessions: dict[str, ChatStateMachine] = {}

    async def load_config(self) -> ChatConfig:
        """Apply the stored configuration blob on top of the environment defaults."""
        defaults = self.settings.chat.to_config()
        try:
            stored = await self.session_store.get(CONFIG_KEY)
        except RepositoryError as e:
            logger.error(f"Failed to load stored chat config: {e}")
            stored = None

        if stored:
            try:
                self.config = ChatConfig.from_dict(stored, defaults)
            except (TypeError, ValueError) as e:
                logger.warning(f"Ignoring malformed stored chat config: {e}")
                self.config = defaults
        logger.info(f"Chat config: {self.config.to_dict()}")
        return self.config

    async def update_config(self, changes: dict) -> ChatConfig:
        """Validate, persist and broadcast a configuration change."""
        config = ChatConfig.from_dict(
            {key: changes[key] for key in CONFIG_FIELDS if key in changes}, self.config
        )
        self.config = config
        try:
            await self.session_store.set(CONFIG_KEY, config.to_dict())
        except RepositoryError as e:
            logger.error(f"Failed to store chat config: {e}")
        for machine in self.active_sessions.values():
            machine.update_config(config)
        return config

    def create_state_machine(self, session_id: str, rng: Optional[random.Random] = None) -> ChatStateMachine:
        return ChatStateMachine(
            session=ChatSession(session_id=session_id),
            context=SessionContext(session_id, rng=rng),
            orchestrator=self.orchestrator,
            response_repository=self.response_repo,
            session_store=self.session_store,
            prefill=self.prefill,
            contact=self.contact,
            config=self.config,
            table=self.table,
        )

    async def handle_frame(self, machine: ChatStateMachine, raw: str) -> list[dict]:
        """Handle one client frame and return the frames to send back."""
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            return [{"type": "error", "error": "Malformed JSON frame"}]
        if not isinstance(frame, dict):
            return [{"type": "error", "error": "Frames must be JSON objects"}]

        match frame.get("type"):
            case "start":
                role = Role.parse(frame["role"]) if frame.get("role") else None
                turn = await machine.initialize_chat(role)
                return turn_frames(turn, history=machine.session.transcript.render())
            case "message":
                text = frame.get("text")
                if not isinstance(text, str):
                    return [{"type": "error", "error": "message frames need a text field"}]
                return turn_frames(await machine.handle_send_message(text))
            case "option":
                option_id = frame.get("id")
                if not isinstance(option_id, str) or not option_id:
                    return [{"type": "error", "error": "option frames need an id field"}]
                return turn_frames(await machine.handle_option_selection(option_id))
            case "reset":
                return turn_frames(await machine.reset_chat(manual=True))
            case "link_blocked":
                return turn_frames(await machine.handle_link_blocked())
            case "configure":
                try:
                    config = await self.update_config(frame)
                except (TypeError, ValueError) as e:
                    return [{"type": "error", "error": f"Invalid configuration: {e}"}]
                return [{"type": "config", **config.to_dict()}]
            case other:
                return [{"type": "error", "error": f"Unknown frame type {other!r}"}]

    async def handle_connection(self, websocket: ServerConnection) -> None:
        """Handle a single WebSocket connection."""
        session_id = session_id_from_path(websocket.request.path if websocket.request else "")
        machine = self.create_state_machine(session_id)
        self.active_sessions[session_id] = machine
        prefix = machine.log_prefix

        logger.info(f"{prefix} Visitor connected")

        try:
            await websocket.send(json.dumps({"type": "session", "session_id": session_id}))

            async for raw in websocket:
                logger.debug(f"{prefix} Received frame ({len(raw)} chars)")
                await websocket.send(json.dumps({"type": "typing", "active": True}))
                frames = await self.handle_frame(machine, raw)
                for frame in frames:
                    await websocket.send(json.dumps(frame))
                await websocket.send(json.dumps({"type": "typing", "active": False}))

        except ConnectionClosed:
            pass
        except Exception:
            logger.exception(f"{prefix} Connection error")
        finally:
            if self.active_sessions.get(session_id) is machine:
                del self.active_sessions[session_id]
            logger.info(f"{prefix} Disconnected")

    async def _handle_health_check(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Handle HTTP health check requests."""
        try:
            request = await reader.read(1024)
            if b"GET /health" in request or b"GET / " in request:
                body = json.dumps({
                    "status": "ok",
                    "sessions": len(self.active_sessions),
                    "mode": self.config.mode.value,
                }).encode()
                response = (
                    b"HTTP/1.1 200 OK\r\n"
                    b"Content-Type: application/json\r\n"
                    + f"Content-Length: {len(body)}\r\n".encode()
                    + b"\r\n"
                    + body
                )
            else:
                response = (
                    b"HTTP/1.1 404 Not Found\r\n"
                    b"Content-Length: 0\r\n"
                    b"\r\n"
                )
            writer.write(response)
            await writer.drain()
        finally:
            writer.close()
            await writer.wait_closed()

    async def _start_health_server(self) -> asyncio.Server:
        """Start the HTTP health check server."""
        host = self.settings.server.host
        health_port = self.settings.server.health_port
        server = await asyncio.start_server(
            self._handle_health_check, host, health_port
        )
        logger.info(f"Health check running on http://{host}:{health_port}/health")
        return server

    async def start(self) -> None:
        """Start the WebSocket server and health check endpoint."""
        host = self.settings.server.host
        port = self.settings.server.port

        await self.load_config()
        logger.info(f"Care chat WebSocket server on ws://{host}:{port}")

        health_server = await self._start_health_server()

        async with health_server, serve(self.handle_connection, host, port) as ws_server:
            await ws_server.serve_forever()
