"""Domain models for the care chat assistant."""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


POSITION_KEY_REGEX = re.compile(r"^section_(\d+)_question_(\d+)$")


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class Role(str, Enum):
    """Visitor category selecting which question script applies."""
    FAMILY = "family"
    PROFESSIONAL = "professional"
    COMMUNITY = "community"

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class ChatMode(str, Enum):
    """How bot utterances are produced."""
    AI = "ai"
    SCRIPTED = "scripted"
    HYBRID = "hybrid"


class ConversationStage(str, Enum):
    """Coarse conversation phase."""
    INTRO = "intro"
    QUESTIONS = "questions"
    COMPLETION = "completion"


class QuestionType(str, Enum):
    """Answer shape expected by a script question."""
    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"
    MULTISELECT = "multiselect"
    CHECKBOX = "checkbox"
    CONFIRM = "confirm"

    @property
    def is_multi_select(self) -> bool:
        return self in (QuestionType.MULTISELECT, QuestionType.CHECKBOX)

    @property
    def has_choices(self) -> bool:
        return self in (QuestionType.SELECT, QuestionType.MULTISELECT, QuestionType.CHECKBOX)


class FieldType(str, Enum):
    """Free-text input kinds that get format validation."""
    EMAIL = "email"
    PHONE = "phone"
    NAME = "name"
    BUDGET = "budget"


class ControlAction(str, Enum):
    """Option ids that steer the conversation instead of answering a question."""
    RESUME = "resume"
    RESTART = "restart"
    CONTINUE = "continue"
    DONE_SELECTING = "done_selecting"
    HAVE_MORE_QUESTIONS = "have_more_questions"
    PROCEED_TO_REGISTRATION = "proceed_to_registration"
    TALK_TO_REPRESENTATIVE = "talk_to_representative"
    CLOSE_CHAT = "close_chat"

    @classmethod
    def parse(cls, option_id: str) -> Optional["ControlAction"]:
        try:
            return cls(option_id)
        except ValueError:
            return None

    @property
    def is_completion(self) -> bool:
        return self in (
            ControlAction.PROCEED_TO_REGISTRATION,
            ControlAction.TALK_TO_REPRESENTATIVE,
            ControlAction.CLOSE_CHAT,
        )


# A committed answer: free text or a single option id, or the ordered ids of a multi-select.
Answer = Union[str, list[str]]


@dataclass(frozen=True)
class ChatOption:
    """A quick reply attached to a bot message."""
    id: str
    label: str
    subtext: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"id": self.id, "label": self.label}
        if self.subtext:
            data["subtext"] = self.subtext
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ChatOption":
        return cls(id=data["id"], label=data.get("label", data["id"]), subtext=data.get("subtext"))


@dataclass(frozen=True)
class ChatMessage:
    """One turn in the transcript."""
    content: str
    is_user: bool
    timestamp: int = field(default_factory=now_ms)
    options: Optional[tuple[ChatOption, ...]] = None

    def to_dict(self) -> dict:
        data = {
            "content": self.content,
            "is_user": self.is_user,
            "timestamp": self.timestamp,
        }
        if self.options:
            data["options"] = [option.to_dict() for option in self.options]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ChatMessage":
        options = data.get("options")
        return cls(
            content=data["content"],
            is_user=bool(data.get("is_user", False)),
            timestamp=int(data.get("timestamp") or now_ms()),
            options=tuple(ChatOption.from_dict(o) for o in options) if options else None,
        )


class Transcript:
    """Append-only list of messages for one session."""

    def __init__(self, messages: Optional[list[ChatMessage]] = None):
        self._messages: list[ChatMessage] = list(messages or [])

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(self._messages)

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def append(self, message: ChatMessage) -> ChatMessage:
        self._messages.append(message)
        return message

    def reset(self) -> None:
        self._messages = []

    def last_bot_message(self) -> Optional[ChatMessage]:
        for message in reversed(self._messages):
            if not message.is_user:
                return message
        return None

    def active_options_index(self) -> Optional[int]:
        """Index of the only bot message whose options may still be shown."""
        for index in range(len(self._messages) - 1, -1, -1):
            message = self._messages[index]
            if not message.is_user and message.options:
                return index
        return None

    def render(self) -> list[ChatMessage]:
        """Messages as they should be displayed: stale option sets are dropped."""
        active = self.active_options_index()
        rendered = []
        for index, message in enumerate(self._messages):
            if message.options and index != active:
                message = ChatMessage(
                    content=message.content,
                    is_user=message.is_user,
                    timestamp=message.timestamp,
                )
            rendered.append(message)
        return rendered

    def to_list(self) -> list[dict]:
        return [message.to_dict() for message in self._messages]

    @classmethod
    def from_list(cls, data: Optional[list[dict]]) -> "Transcript":
        return cls([ChatMessage.from_dict(item) for item in data or []])


@dataclass(frozen=True)
class ChatResponse:
    """A bot utterance produced by one of the flow engines."""
    message: str
    options: Optional[list[ChatOption]] = None


@dataclass(frozen=True)
class ChatConfig:
    """Process-wide engine configuration."""
    mode: ChatMode = ChatMode.HYBRID
    temperature: float = 0.7
    fallback_threshold: int = 2

    def __post_init__(self):
        if not 0.0 <= self.temperature <= 1.0:
            raise ValueError(f"temperature must be between 0 and 1, got {self.temperature}")
        if self.fallback_threshold < 1:
            raise ValueError(f"fallback_threshold must be >= 1, got {self.fallback_threshold}")

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "temperature": self.temperature,
            "fallback_threshold": self.fallback_threshold,
        }

    @classmethod
    def from_dict(cls, data: dict, defaults: Optional["ChatConfig"] = None) -> "ChatConfig":
        base = defaults or cls()
        return cls(
            mode=ChatMode(data.get("mode", base.mode)),
            temperature=float(data.get("temperature", base.temperature)),
            fallback_threshold=int(data.get("fallback_threshold", base.fallback_threshold)),
        )


@dataclass
class MultiSelection:
    """Selections accumulated for the multi-select question currently on screen."""
    active: bool = False
    ready: bool = False
    selections: list[str] = field(default_factory=list)

    def start(self, first_id: str) -> None:
        self.active = True
        self.selections = [first_id]

    def toggle(self, option_id: str) -> list[str]:
        if option_id in self.selections:
            self.selections.remove(option_id)
        else:
            self.selections.append(option_id)
        return list(self.selections)

    def clear(self, ready: bool = False) -> None:
        self.active = False
        self.ready = ready
        self.selections = []


@dataclass(frozen=True)
class Position:
    """Section/question slot inside a role's script."""
    section_index: int = 0
    question_index: int = 0

    @property
    def key(self) -> str:
        return f"section_{self.section_index}_question_{self.question_index}"

    @classmethod
    def from_key(cls, key: str) -> Optional["Position"]:
        match = POSITION_KEY_REGEX.match(key or "")
        if not match:
            return None
        return cls(int(match.group(1)), int(match.group(2)))

    @property
    def is_first_slot(self) -> bool:
        return self.section_index == 0 and self.question_index == 0


@dataclass
class Progress:
    """The persisted part of a session used for resuming."""
    LEGACY_SLOTS_PER_SECTION = 10

    role: Role
    section_index: int = 0
    question_index: int = 0
    stage: ConversationStage = ConversationStage.QUESTIONS
    form_data: dict[str, Any] = field(default_factory=dict)
    pending_transition: bool = False

    def to_blob(self) -> dict:
        return {
            "role": self.role.value,
            "sectionIndex": self.section_index,
            "questionIndex": self.question_index,
            "stage": self.stage.value,
            "formData": self.form_data,
            "pendingTransition": self.pending_transition,
        }

    @classmethod
    def from_blob(cls, blob: Optional[dict]) -> Optional["Progress"]:
        """Decode a stored progress blob, or None if it names no usable role.

        Blobs without ``sectionIndex`` come from the flat encoding where
        ``questionIndex`` packed ``section * 10 + question``.
        """
        if not blob:
            return None
        role = Role.parse(blob.get("role"))
        if role is None:
            return None

        flat_index = int(blob.get("questionIndex") or 0)
        if "sectionIndex" in blob:
            section_index = int(blob["sectionIndex"] or 0)
            question_index = flat_index
        else:
            section_index, question_index = divmod(flat_index, cls.LEGACY_SLOTS_PER_SECTION)

        try:
            stage = ConversationStage(blob.get("stage", ConversationStage.QUESTIONS.value))
        except ValueError:
            stage = ConversationStage.QUESTIONS

        return cls(
            role=role,
            section_index=section_index,
            question_index=question_index,
            stage=stage,
            form_data=dict(blob.get("formData") or {}),
            pending_transition=bool(blob.get("pendingTransition", False)),
        )


@dataclass
class ChatSession:
    """Runtime state of one conversation."""
    session_id: str
    role: Optional[Role] = None
    section_index: int = 0
    question_index: int = 0
    stage: ConversationStage = ConversationStage.INTRO
    form_data: dict[str, Any] = field(default_factory=dict)
    is_resuming: bool = False
    pending_transition: bool = False
    field_type: Optional[FieldType] = None
    multi_selection: MultiSelection = field(default_factory=MultiSelection)
    transcript: Transcript = field(default_factory=Transcript)

    @property
    def position(self) -> Position:
        return Position(self.section_index, self.question_index)

    @property
    def question_key(self) -> str:
        return self.position.key

    @property
    def log_prefix(self) -> str:
        return f"[SESSION {self.session_id[:8]}]"

    def add_message(
        self,
        content: str,
        is_user: bool = False,
        options: Optional[list[ChatOption]] = None,
    ) -> ChatMessage:
        message = ChatMessage(
            content=content,
            is_user=is_user,
            options=tuple(options) if options else None,
        )
        return self.transcript.append(message)

    def to_progress(self) -> Optional[Progress]:
        if self.role is None:
            return None
        return Progress(
            role=self.role,
            section_index=self.section_index,
            question_index=self.question_index,
            stage=self.stage,
            form_data=dict(self.form_data),
            pending_transition=self.pending_transition,
        )

    def reset(self) -> None:
        self.role = None
        self.section_index = 0
        self.question_index = 0
        self.stage = ConversationStage.INTRO
        self.form_data = {}
        self.is_resuming = False
        self.pending_transition = False
        self.field_type = None
        self.multi_selection.clear()
        self.transcript.reset()


class EventType(str, Enum):
    """Side effects a turn asks the client to perform."""
    NAVIGATE = "navigate"
    OPEN_URL = "open_url"
    CONTACT_FORM = "contact_form"
    RESET = "reset"
    SELECTION = "selection"
    FIELD_TYPE = "field_type"


@dataclass(frozen=True)
class ChatEvent:
    type: EventType
    data: dict = field(default_factory=dict)


@dataclass
class ChatTurn:
    """Everything one handler call produced for the client."""
    messages: list[ChatMessage] = field(default_factory=list)
    events: list[ChatEvent] = field(default_factory=list)
    validation_error: Optional[str] = None
    validation_hint: Optional[str] = None

    def emit(self, event_type: EventType, **data) -> None:
        self.events.append(ChatEvent(event_type, data))

    def has_event(self, event_type: EventType) -> bool:
        return any(event.type == event_type for event in self.events)
