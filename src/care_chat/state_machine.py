"""Conversation state machine for the registration chat."""

import logging
from typing import Any, Awaitable, Optional

from . import phrasings
from .context import SessionContext
from .contact import ContactChannel, ContactChannelError
from .engine.orchestrator import ConversationOrchestrator
from .engine.scripted import ScriptedFlowEngine, question_options
from .flows import DEFAULT_QUESTION_TABLE, Question, QuestionTable
from .models import (
    ChatConfig,
    ChatOption,
    ChatResponse,
    ChatSession,
    ChatTurn,
    ControlAction,
    ConversationStage,
    EventType,
    Position,
    Progress,
    Role,
    Transcript,
)
from .prefill import PrefillBridge, PrefillError
from .repository.base import RepositoryError, ResponseRepository, SessionStore, session_key
from .style import StyleFormatter
from .validation import detect_field_type, placeholder_for, validate_chat_input

logger = logging.getLogger(__name__)

WELCOME_BACK_PROMPT = "Welcome back! Would you like to continue where you left off?"
MULTI_SELECT_PROMPT = (
    "Great choice! You can select multiple options. Pick any others that apply, "
    "then click \"Done selecting\" when you're finished."
)
EMPTY_SELECTION_PROMPT = "Please select at least one option before continuing."
MULTI_SELECT_TEXT_PROMPT = "Please pick from the options above, then click \"Done selecting\"."
COMPLETION_TEXT_REPLY = (
    "Thanks for your message! Would you like to complete your registration "
    "or talk to a representative?"
)
HAVE_MORE_QUESTIONS_REPLY = (
    "No problem! Our team is happy to answer any questions. You can talk to a "
    "representative now, or complete your registration and ask along the way."
)
REDIRECT_MESSAGE = "Thanks! I'm taking you to the registration form now with your answers filled in."
REPRESENTATIVE_MESSAGE = "I'll connect you with a representative now."
CONTACT_FORM_MESSAGE = "Let me open our contact form so a representative can reach out to you."
FAREWELL_MESSAGE = "Thanks for chatting with Tavara! Take care, and come back anytime."

SESSION_KEYS = (
    "messages",
    "progress",
    "last_message",
    "prefill",
    "transitioning_from_chat",
    "auto_redirect",
)


class ChatStateMachine:
    """Manages one conversation: option picks, free text, navigation and hand-off."""

    def __init__(
        self,
        session: ChatSession,
        context: SessionContext,
        orchestrator: ConversationOrchestrator,
        response_repository: ResponseRepository,
        session_store: SessionStore,
        prefill: PrefillBridge,
        contact: ContactChannel,
        config: ChatConfig,
        table: QuestionTable = DEFAULT_QUESTION_TABLE,
        formatter: Optional[StyleFormatter] = None,
    ):
        self.session = session
        self.context = context
        self.orchestrator = orchestrator
        self.response_repository = response_repository
        self.session_store = session_store
        self.prefill = prefill
        self.contact = contact
        self.config = config
        self.table = table
        self.formatter = formatter or StyleFormatter()
        self.scripted = ScriptedFlowEngine(table)
        self._stored_progress: Optional[Progress] = None
        self._previous_last_message: Optional[str] = None

    @property
    def log_prefix(self) -> str:
        return self.session.log_prefix

    def _key(self, name: str) -> str:
        return session_key(name, self.session.session_id)

    # -- persistence -------------------------------------------------------

    async def _persist(self, description: str, operation: Awaitable) -> Any:
        """Await a storage call; failures are logged and never block the conversation."""
        try:
            return await operation
        except RepositoryError as e:
            logger.error(f"{self.log_prefix} Failed to {description}: {e}")
            return None

    async def _save_answer(self, value) -> None:
        session = self.session
        await self._persist(
            "save answer",
            self.response_repository.save_chat_response(
                session.session_id, session.role, session.section_index, session.question_key, value
            ),
        )

    async def _save_progress(self) -> None:
        progress = self.session.to_progress()
        if progress is None:
            return
        await self._persist("store progress", self.session_store.set(self._key("progress"), progress.to_blob()))
        await self._persist(
            "update progress",
            self.response_repository.update_chat_progress(
                self.session.session_id,
                progress.role,
                progress.section_index,
                progress.stage.value,
                self.session.question_key,
                progress.form_data,
            ),
        )

    async def _save_transcript(self) -> None:
        await self._persist(
            "store messages",
            self.session_store.set(self._key("messages"), self.session.transcript.to_list()),
        )
        if self.context.last_message is not None:
            await self._persist(
                "store last message",
                self.session_store.set(self._key("last_message"), self.context.last_message),
            )

    async def _load_progress(self) -> Optional[Progress]:
        blob = await self._persist("load progress", self.session_store.get(self._key("progress")))
        progress = Progress.from_blob(blob)
        if progress is not None:
            return progress

        row = await self._persist(
            "fetch progress", self.response_repository.get_chat_progress(self.session.session_id)
        )
        if not row:
            return None
        position = Position.from_key(row.get("last_question_id")) or Position(row.get("current_section") or 0, 0)
        return Progress.from_blob({
            "role": row.get("role"),
            "sectionIndex": position.section_index,
            "questionIndex": position.question_index,
            "stage": row.get("status", ConversationStage.QUESTIONS.value),
            "formData": row.get("form_data") or {},
        })

    async def _finish(self, turn: ChatTurn) -> ChatTurn:
        await self._save_transcript()
        return turn

    # -- output helpers ----------------------------------------------------

    def _say(self, turn: ChatTurn, content: str, options: Optional[list[ChatOption]] = None) -> None:
        message = self.session.add_message(content, options=options)
        self.context.set_last_message(content)
        turn.messages.append(message)

    def _say_response(self, turn: ChatTurn, response: ChatResponse, lead_in: str = "") -> None:
        content = f"{lead_in}{response.message}" if lead_in else response.message
        self._say(turn, content, response.options)

    def _user_says(self, turn: ChatTurn, content: str) -> None:
        turn.messages.append(self.session.add_message(content, is_user=True))

    def _update_field_type(self, turn: ChatTurn) -> None:
        session = self.session
        last_bot = session.transcript.last_bot_message()
        session.field_type = detect_field_type(
            self.table,
            session.role,
            session.section_index,
            session.question_index,
            last_bot.content if last_bot else None,
        )
        turn.emit(
            EventType.FIELD_TYPE,
            field_type=session.field_type.value if session.field_type else None,
            placeholder=placeholder_for(session.field_type),
        )

    def _current_question(self) -> Optional[Question]:
        return self.table.get_question_at(self.session.role, self.session.position)

    def _option_label(self, option_id: str) -> str:
        index = self.session.transcript.active_options_index()
        if index is not None:
            for option in self.session.transcript.messages[index].options:
                if option.id == option_id:
                    return option.label
        question = self._current_question()
        if question is not None:
            for option in question.options:
                if option.id == option_id:
                    return option.label
        return option_id

    def _known_answers(self) -> dict[str, Any]:
        known = {}
        for question_key, value in self.session.form_data.items():
            position = Position.from_key(question_key)
            found = self.table.get_question_at(self.session.role, position) if position else None
            known[found.id if found else question_key] = value
        return known

    async def _converse(self, turn: ChatTurn) -> None:
        session = self.session
        response = await self.orchestrator.process_conversation(
            session.transcript.messages,
            self.context,
            session.role,
            session.position,
            self.config,
            known_answers=self._known_answers(),
        )
        self._say_response(turn, response)

    def _ask_current_question(self, turn: ChatTurn, lead_in: str = "", section_opener: bool = True) -> None:
        session = self.session
        response = self.scripted.registration_flow(
            session.role, session.position, self.context, section_opener=section_opener
        )
        self._say_response(turn, response, lead_in)
        session.multi_selection.clear(
            ready=self.table.is_multi_select_question(
                session.role, session.section_index, session.question_index
            )
        )
        self._update_field_type(turn)

    # -- session lifecycle -------------------------------------------------

    async def initialize_chat(self, initial_role: Optional[Role] = None) -> ChatTurn:
        """Open the conversation: restore history, offer resume, or greet."""
        turn = ChatTurn()
        session = self.session

        last_message = await self._persist("load last message", self.session_store.get(self._key("last_message")))
        if last_message:
            self.context.set_last_message(last_message)
            self._previous_last_message = last_message

        if initial_role is not None:
            return await self.handle_initial_role_selection(initial_role)

        stored_messages = await self._persist("load messages", self.session_store.get(self._key("messages")))
        self._stored_progress = await self._load_progress()

        if stored_messages:
            session.transcript = Transcript.from_list(stored_messages)
            logger.info(f"{self.log_prefix} Restored {len(session.transcript)} messages")
            if self._stored_progress is not None:
                self._restore_progress(self._stored_progress)
                self._stored_progress = None
                if session.stage == ConversationStage.QUESTIONS:
                    session.multi_selection.clear(
                        ready=self.table.is_multi_select_question(
                            session.role, session.section_index, session.question_index
                        )
                    )
                    self._update_field_type(turn)
            return turn

        if self._stored_progress is not None:
            logger.info(f"{self.log_prefix} Found stored progress for role {self._stored_progress.role.value}")
            session.is_resuming = True
            self._say(turn, WELCOME_BACK_PROMPT, list(phrasings.RESUME_OPTIONS))
            return await self._finish(turn)

        await self._converse(turn)
        return await self._finish(turn)

    async def reset_chat(self, manual: bool = True) -> ChatTurn:
        """Forget the session everywhere and start over with a fresh intro."""
        logger.info(f"{self.log_prefix} Resetting chat ({'manual' if manual else 'restart'})")
        turn = ChatTurn()
        await self._clear_session()
        turn.emit(EventType.RESET)
        await self._converse(turn)
        return await self._finish(turn)

    async def _clear_session(self) -> None:
        for name in SESSION_KEYS:
            await self._persist(f"delete {name}", self.session_store.delete(self._key(name)))
        self.session.reset()
        self.context.reset()
        self._stored_progress = None
        self._previous_last_message = None

    def update_config(self, config: ChatConfig) -> None:
        if config.mode != self.config.mode:
            logger.info(f"{self.log_prefix} Chat mode changed {self.config.mode.value} -> {config.mode.value}")
            self.context.reset_retry()
        self.config = config

    # -- role selection & resume -------------------------------------------

    async def handle_role_selection(self, role_id: str) -> ChatTurn:
        match ControlAction.parse(role_id):
            case ControlAction.RESUME:
                return await self.handle_resume_chat()
            case ControlAction.RESTART:
                return await self.reset_chat(manual=False)

        turn = ChatTurn()
        role = Role.parse(role_id)
        self._user_says(turn, self._option_label(role_id))
        if role is None:
            response = self.scripted.clarify(self.session.transcript.messages)
            self._say_response(turn, response)
            return await self._finish(turn)

        self._start_role(role)
        await self._save_progress()
        self._ask_current_question(turn, lead_in="Let's get started.\n\n")
        return await self._finish(turn)

    async def handle_initial_role_selection(self, role: Role) -> ChatTurn:
        turn = ChatTurn()
        self._start_role(role)
        await self._save_progress()
        self._ask_current_question(turn)
        return await self._finish(turn)

    def _start_role(self, role: Role) -> None:
        session = self.session
        logger.info(f"{self.log_prefix} Role selected: {role.value}")
        session.role = role
        session.section_index = 0
        session.question_index = 0
        session.stage = ConversationStage.QUESTIONS
        session.pending_transition = False
        session.is_resuming = False
        session.multi_selection.clear()

    def _restore_progress(self, progress: Progress) -> None:
        """Load stored progress into the session, snapping the position onto the script."""
        session = self.session
        session.role = progress.role
        session.stage = progress.stage
        session.form_data = dict(progress.form_data)
        session.pending_transition = progress.pending_transition

        stored = Position(progress.section_index, progress.question_index)
        position = self.table.clamp_position(progress.role, stored)
        if position is None:
            position = self.table.last_position(progress.role) or Position()
            session.stage = ConversationStage.COMPLETION
            session.pending_transition = False
        if position != stored:
            logger.warning(
                f"{self.log_prefix} Stored position {stored.key} is not in the "
                f"{progress.role.value} script, using {position.key}"
            )
        session.section_index = position.section_index
        session.question_index = position.question_index

    async def handle_resume_chat(self) -> ChatTurn:
        turn = ChatTurn()
        session = self.session
        progress = self._stored_progress or await self._load_progress()
        if progress is None:
            return await self.reset_chat(manual=False)

        self._user_says(turn, self._option_label(ControlAction.RESUME.value))
        self._restore_progress(progress)
        session.pending_transition = False
        session.is_resuming = True
        self._stored_progress = None
        logger.info(
            f"{self.log_prefix} Resuming {progress.role.value} at section "
            f"{session.section_index} question {session.question_index}"
        )

        if session.stage == ConversationStage.COMPLETION:
            self._say_response(turn, self.scripted.completion_prompt(session.role))
            return await self._finish(turn)

        title = self.table.get_section_title(session.role, session.section_index)
        welcome = f"Welcome back! We were discussing {title.lower()}. Let's pick up where we left off."
        if self.context.is_repeat_message(welcome) or welcome == self._previous_last_message:
            self._ask_current_question(turn)
        else:
            self._say(turn, welcome)
            self._ask_current_question(turn, section_opener=False)
        await self._save_progress()
        return await self._finish(turn)

    # -- option selection --------------------------------------------------

    async def handle_option_selection(self, option_id: str) -> ChatTurn:
        """Dispatch a quick-reply pick to the handler for its kind."""
        session = self.session
        action = ControlAction.parse(option_id)
        match action:
            case ControlAction.RESUME | ControlAction.RESTART:
                return await self.handle_role_selection(option_id)
            case ControlAction.PROCEED_TO_REGISTRATION:
                return await self._proceed_to_registration()
            case ControlAction.TALK_TO_REPRESENTATIVE:
                return await self._talk_to_representative()
            case ControlAction.CLOSE_CHAT:
                return await self._close_chat()
            case ControlAction.HAVE_MORE_QUESTIONS:
                return await self._have_more_questions()
            case ControlAction.DONE_SELECTING:
                return await self._handle_multi_selection(option_id)
            case ControlAction.CONTINUE:
                return await self._handle_transition_option(option_id)

        if session.role is None:
            return await self.handle_role_selection(option_id)
        if session.multi_selection.active:
            return await self._handle_multi_selection(option_id)

        question = self._current_question()
        offered = {option.id for option in question.options} if question else set()
        if Role.parse(option_id) is not None and option_id not in offered:
            return await self.handle_role_selection(option_id)
        return await self._handle_standard_option(option_id)

    async def _handle_standard_option(self, option_id: str) -> ChatTurn:
        turn = ChatTurn()
        session = self.session
        self._user_says(turn, self._option_label(option_id))

        # multi-select answers are committed on "done selecting"
        if self.table.is_multi_select_question(session.role, session.section_index, session.question_index):
            session.multi_selection.start(option_id)
            turn.emit(EventType.SELECTION, selections=list(session.multi_selection.selections))
            question = self._current_question()
            self._say(turn, MULTI_SELECT_PROMPT, question_options(question))
            return await self._finish(turn)

        session.form_data[session.question_key] = option_id
        await self._save_answer(option_id)
        await self.advance_to_next_question(turn)
        return await self._finish(turn)

    async def _handle_transition_option(self, option_id: str) -> ChatTurn:
        turn = ChatTurn()
        session = self.session
        self._user_says(turn, self._option_label(option_id))
        if session.role is None:
            await self._converse(turn)
            return await self._finish(turn)

        session.pending_transition = False
        self._ask_current_question(turn)
        await self._save_progress()
        return await self._finish(turn)

    async def _handle_multi_selection(self, option_id: str) -> ChatTurn:
        turn = ChatTurn()
        session = self.session
        selection = session.multi_selection

        if option_id != ControlAction.DONE_SELECTING.value:
            turn.emit(EventType.SELECTION, selections=selection.toggle(option_id))
            return turn

        if not selection.selections:
            self._say(turn, EMPTY_SELECTION_PROMPT, question_options(self._current_question()))
            return await self._finish(turn)

        selections = list(selection.selections)
        self._user_says(turn, ", ".join(self._option_label(item) for item in selections))
        session.form_data[session.question_key] = selections
        await self._save_answer(selections)
        selection.clear()
        await self.advance_to_next_question(turn)
        return await self._finish(turn)

    async def _have_more_questions(self) -> ChatTurn:
        turn = ChatTurn()
        self._user_says(turn, self._option_label(ControlAction.HAVE_MORE_QUESTIONS.value))
        self.session.stage = ConversationStage.COMPLETION
        self._say(turn, HAVE_MORE_QUESTIONS_REPLY, list(phrasings.COMPLETION_OPTIONS))
        await self._save_progress()
        return await self._finish(turn)

    # -- completion stage --------------------------------------------------

    async def _proceed_to_registration(self) -> ChatTurn:
        turn = ChatTurn()
        session = self.session
        self._user_says(turn, self._option_label(ControlAction.PROCEED_TO_REGISTRATION.value))

        handed_off = False
        try:
            if session.role is None:
                raise PrefillError("No role selected")
            url = await self.prefill.prepare_prefill_data_and_get_registration_url(
                session.session_id,
                session.role,
                session.transcript.messages,
                session.form_data,
            )
            handed_off = True
        except PrefillError as e:
            logger.warning(f"{self.log_prefix} Prefill failed, using bare registration path: {e}")
            url = self.prefill.registration_path(session.role)

        await self._persist(
            "flag registration transition",
            self.session_store.set(self._key("transitioning_from_chat"), True),
        )
        self._say(turn, REDIRECT_MESSAGE)
        turn.emit(EventType.NAVIGATE, url=url)
        logger.info(f"{self.log_prefix} Handing off to registration")

        await self._save_transcript()
        if handed_off:
            for name in ("messages", "progress", "last_message"):
                await self._persist(f"delete {name}", self.session_store.delete(self._key(name)))
        return turn

    async def _talk_to_representative(self) -> ChatTurn:
        turn = ChatTurn()
        session = self.session
        self._user_says(turn, self._option_label(ControlAction.TALK_TO_REPRESENTATIVE.value))
        try:
            self.contact.open_representative_chat(session.role, turn)
            self._say(turn, REPRESENTATIVE_MESSAGE)
        except ContactChannelError as e:
            logger.warning(f"{self.log_prefix} Representative link unavailable: {e}")
            self._say(turn, CONTACT_FORM_MESSAGE)
            self.contact.open_contact_form(session.role, session.session_id, session.transcript.render(), turn)
        return await self._finish(turn)

    async def handle_link_blocked(self) -> ChatTurn:
        """The client could not open the representative link."""
        turn = ChatTurn()
        session = self.session
        logger.info(f"{self.log_prefix} Representative link blocked, opening contact form")
        self._say(turn, CONTACT_FORM_MESSAGE)
        self.contact.open_contact_form(session.role, session.session_id, session.transcript.render(), turn)
        return await self._finish(turn)

    async def _close_chat(self) -> ChatTurn:
        turn = ChatTurn()
        self._user_says(turn, self._option_label(ControlAction.CLOSE_CHAT.value))
        self._say(turn, FAREWELL_MESSAGE)
        await self._clear_session()
        turn.emit(EventType.RESET)
        return turn

    # -- navigation --------------------------------------------------------

    async def advance_to_next_question(self, turn: ChatTurn) -> None:
        """Move past the current question and emit whatever comes next."""
        session = self.session
        role = session.role
        section_index = session.section_index
        question_index = session.question_index

        is_last_question = self.table.is_end_of_section(role, section_index, question_index)
        is_last_section = section_index >= self.table.get_total_sections_for_role(role) - 1

        if is_last_question and is_last_section:
            session.stage = ConversationStage.COMPLETION
            session.multi_selection.clear()
            session.field_type = None
            await self._save_progress()
            try:
                await self.prefill.generate_prefill(
                    session.session_id, role, session.transcript.messages, session.form_data
                )
            except PrefillError as e:
                logger.error(f"{self.log_prefix} Failed to generate prefill data: {e}")
            logger.info(f"{self.log_prefix} Questionnaire complete")
            self._say_response(turn, self.scripted.completion_prompt(role))
            return

        if is_last_question:
            session.section_index = section_index + 1
            session.question_index = 0
            session.multi_selection.clear()
            session.pending_transition = True
            await self._save_progress()
            self._say_response(
                turn, self.scripted.section_transition(role, section_index, section_index + 1)
            )
            return

        session.question_index = question_index + 1
        await self._save_progress()
        self._ask_current_question(turn)

    # -- free text ---------------------------------------------------------

    async def handle_send_message(self, text: str) -> ChatTurn:
        turn = ChatTurn()
        session = self.session
        text = text.strip()
        logger.info(f"{self.log_prefix} Received message ({len(text)} chars)")

        if session.stage == ConversationStage.COMPLETION:
            if not text:
                return turn
            self._user_says(turn, text)
            self._say(turn, COMPLETION_TEXT_REPLY, list(phrasings.COMPLETION_OPTIONS))
            return await self._finish(turn)

        question = self._current_question()
        if session.role is None or question is None:
            if not text:
                return turn
            self._user_says(turn, text)
            await self._converse(turn)
            return await self._finish(turn)

        if session.pending_transition:
            if not text:
                return turn
            self._user_says(turn, text)
            session.pending_transition = False
            self._ask_current_question(turn)
            await self._save_progress()
            return await self._finish(turn)

        if session.multi_selection.active:
            self._say(turn, MULTI_SELECT_TEXT_PROMPT, question_options(question))
            return await self._finish(turn)

        last_bot = session.transcript.last_bot_message()
        field_type = detect_field_type(
            self.table,
            session.role,
            session.section_index,
            session.question_index,
            last_bot.content if last_bot else None,
        )
        result = validate_chat_input(text, field_type)
        if not result.is_valid:
            session.field_type = field_type
            turn.validation_error = result.error_message
            turn.validation_hint = self.formatter.validation_error(field_type, self.context)
            return turn

        self._user_says(turn, text)
        session.form_data[session.question_key] = text
        await self._save_answer(text)
        await self.advance_to_next_question(turn)
        return await self._finish(turn)
