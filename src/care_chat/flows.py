"""Registration question scripts, one per role.

The tables are validated when the module is imported so a malformed script
fails at startup instead of desynchronizing a live conversation.
"""

from dataclasses import dataclass, field
from typing import Optional

from .models import ChatOption, ControlAction, Position, QuestionType, Role


class ScriptTableError(ValueError):
    """Raised when a registration script is malformed."""


@dataclass(frozen=True)
class Question:
    """A single script question."""
    id: str
    label: str
    type: QuestionType = QuestionType.TEXT
    options: tuple[ChatOption, ...] = ()
    required: bool = True

    @property
    def is_multi_select(self) -> bool:
        return self.type.is_multi_select


@dataclass(frozen=True)
class Section:
    """A named group of sequential questions."""
    title: str
    questions: tuple[Question, ...]


@dataclass(frozen=True)
class RegistrationFlow:
    """The full question script for one role."""
    role: Role
    description: str
    sections: tuple[Section, ...] = field(default_factory=tuple)

    def validate(self) -> None:
        if not self.sections:
            raise ScriptTableError(f"{self.role.value}: script has no sections")

        reserved = {action.value for action in ControlAction}
        seen_ids: set[str] = set()
        for section_index, section in enumerate(self.sections):
            if not section.title:
                raise ScriptTableError(f"{self.role.value}: section {section_index} has no title")
            if not section.questions:
                raise ScriptTableError(
                    f"{self.role.value}: section '{section.title}' has no questions"
                )
            for question in section.questions:
                if question.id in seen_ids:
                    raise ScriptTableError(
                        f"{self.role.value}: duplicate question id '{question.id}'"
                    )
                seen_ids.add(question.id)
                if question.type.has_choices and not question.options:
                    raise ScriptTableError(
                        f"{self.role.value}: question '{question.id}' needs options"
                    )
                option_ids = [option.id for option in question.options]
                if len(option_ids) != len(set(option_ids)):
                    raise ScriptTableError(
                        f"{self.role.value}: question '{question.id}' repeats an option id"
                    )
                clashing = reserved.intersection(option_ids)
                if clashing:
                    raise ScriptTableError(
                        f"{self.role.value}: question '{question.id}' uses reserved "
                        f"option ids {sorted(clashing)}"
                    )


def _choices(*pairs: tuple[str, str]) -> tuple[ChatOption, ...]:
    return tuple(ChatOption(id=option_id, label=label) for option_id, label in pairs)


FAMILY_FLOW = RegistrationFlow(
    role=Role.FAMILY,
    description="Chat flow for family registration",
    sections=(
        Section(
            title="Care Recipient",
            questions=(
                Question(
                    id="care_recipient",
                    label="Who are you seeking care for?",
                    type=QuestionType.SELECT,
                    options=_choices(
                        ("parent", "For my parent"),
                        ("spouse", "For my spouse"),
                        ("child", "For my child"),
                        ("other", "Someone else"),
                    ),
                ),
                Question(
                    id="care_types",
                    label="What kind of help do they need?",
                    type=QuestionType.MULTISELECT,
                    options=_choices(
                        ("daily_activities", "Help with daily activities"),
                        ("medical", "Medical care"),
                        ("companionship", "Companionship"),
                        ("memory_care", "Memory care"),
                        ("specialized", "Specialized care"),
                    ),
                ),
                Question(
                    id="care_frequency",
                    label="How often do you need care?",
                    type=QuestionType.SELECT,
                    options=_choices(
                        ("daily", "Every day"),
                        ("weekdays", "Weekdays"),
                        ("weekends", "Weekends"),
                        ("occasional", "Now and then"),
                    ),
                ),
            ),
        ),
        Section(
            title="Care Preferences",
            questions=(
                Question(
                    id="start_timeline",
                    label="When would you like care to start?",
                    type=QuestionType.SELECT,
                    options=_choices(
                        ("immediately", "Immediately"),
                        ("within_week", "Within a week"),
                        ("within_month", "Within a month"),
                        ("planning_ahead", "Just planning ahead"),
                    ),
                ),
                Question(
                    id="live_in",
                    label="Would a live-in caregiver work for your family?",
                    type=QuestionType.CONFIRM,
                ),
                Question(
                    id="budget",
                    label="What is your budget for care?",
                    type=QuestionType.TEXT,
                ),
                Question(
                    id="special_requirements",
                    label="Anything else we should know about their care?",
                    type=QuestionType.TEXTAREA,
                    required=False,
                ),
            ),
        ),
        Section(
            title="Contact Information",
            questions=(
                Question(id="first_name", label="What is your first name?"),
                Question(id="last_name", label="What is your last name?"),
                Question(id="email", label="What's your email address?"),
                Question(id="phone", label="What's your phone number?"),
                Question(id="location", label="Which area of Trinidad & Tobago are you in?"),
            ),
        ),
    ),
)

PROFESSIONAL_FLOW = RegistrationFlow(
    role=Role.PROFESSIONAL,
    description="Chat flow for professional registration",
    sections=(
        Section(
            title="Professional Background",
            questions=(
                Question(
                    id="professional_role",
                    label="What is your professional role?",
                    type=QuestionType.SELECT,
                    options=_choices(
                        ("nurse", "Nurse"),
                        ("home_health_aide", "Home Health Aide"),
                        ("therapist", "Therapist"),
                        ("caregiver", "Caregiver"),
                        ("other", "Other"),
                    ),
                ),
                Question(
                    id="years_experience",
                    label="How many years of experience do you have?",
                    type=QuestionType.SELECT,
                    options=_choices(
                        ("0-2", "0-2 years"),
                        ("3-5", "3-5 years"),
                        ("6-10", "6-10 years"),
                        ("10+", "10+ years"),
                    ),
                ),
                Question(
                    id="certifications",
                    label="Do you hold any certifications or special training?",
                    type=QuestionType.TEXTAREA,
                    required=False,
                ),
            ),
        ),
        Section(
            title="Specialties and Availability",
            questions=(
                Question(
                    id="specialties",
                    label="What are your areas of specialty?",
                    type=QuestionType.MULTISELECT,
                    options=_choices(
                        ("elder_care", "Elder Care"),
                        ("child_care", "Child Care"),
                        ("special_needs", "Special Needs"),
                        ("medical_support", "Medical Support"),
                        ("therapy", "Therapy"),
                    ),
                ),
                Question(
                    id="availability",
                    label="When are you usually available?",
                    type=QuestionType.CHECKBOX,
                    options=_choices(
                        ("weekday_days", "Weekday days"),
                        ("weekday_evenings", "Weekday evenings"),
                        ("weekends", "Weekends"),
                        ("overnight", "Overnight"),
                        ("live_in", "Live-in"),
                    ),
                ),
                Question(
                    id="work_areas",
                    label="What areas of Trinidad & Tobago can you work in?",
                    type=QuestionType.TEXT,
                ),
            ),
        ),
        Section(
            title="Contact Information",
            questions=(
                Question(id="first_name", label="What is your first name?"),
                Question(id="last_name", label="What is your last name?"),
                Question(id="email", label="What's your email address?"),
                Question(id="phone", label="What's your phone number?"),
            ),
        ),
    ),
)

COMMUNITY_FLOW = RegistrationFlow(
    role=Role.COMMUNITY,
    description="Chat flow for community registration",
    sections=(
        Section(
            title="Community Information",
            questions=(
                Question(id="full_name", label="What is your full name?"),
                Question(
                    id="organization",
                    label="Are you representing an organization?",
                    type=QuestionType.CONFIRM,
                ),
                Question(
                    id="organization_details",
                    label="Tell us a little about your organization.",
                    type=QuestionType.TEXTAREA,
                    required=False,
                ),
            ),
        ),
        Section(
            title="Involvement",
            questions=(
                Question(
                    id="involvement_type",
                    label="How would you like to get involved?",
                    type=QuestionType.CHECKBOX,
                    options=_choices(
                        ("volunteer", "Volunteer"),
                        ("donate", "Donate"),
                        ("advocacy", "Advocacy"),
                        ("events", "Events"),
                        ("tech", "Tech or design skills"),
                    ),
                ),
                Question(
                    id="time_commitment",
                    label="How much time could you give each month?",
                    type=QuestionType.SELECT,
                    options=_choices(
                        ("few_days", "A few days"),
                        ("one_week", "About a week"),
                        ("flexible", "It varies"),
                    ),
                ),
                Question(
                    id="comments",
                    label="Any additional comments or questions?",
                    type=QuestionType.TEXTAREA,
                    required=False,
                ),
            ),
        ),
        Section(
            title="Contact Information",
            questions=(
                Question(id="email", label="What's your email address?"),
                Question(id="phone", label="What's your phone number?"),
            ),
        ),
    ),
)


class QuestionTable:
    """Read-only lookups over the registration scripts."""

    def __init__(self, flows: Optional[list[RegistrationFlow]] = None):
        flows = flows if flows is not None else [FAMILY_FLOW, PROFESSIONAL_FLOW, COMMUNITY_FLOW]
        self._flows: dict[Role, RegistrationFlow] = {}
        for flow in flows:
            flow.validate()
            self._flows[flow.role] = flow

    def get_flow(self, role: Optional[Role]) -> Optional[RegistrationFlow]:
        if role is None:
            return None
        return self._flows.get(role)

    def get_section(self, role: Optional[Role], section_index: int) -> Optional[Section]:
        flow = self.get_flow(role)
        if flow is None or not 0 <= section_index < len(flow.sections):
            return None
        return flow.sections[section_index]

    def get_current_question(
        self, role: Optional[Role], section_index: int, question_index: int
    ) -> Optional[Question]:
        section = self.get_section(role, section_index)
        if section is None or not 0 <= question_index < len(section.questions):
            return None
        return section.questions[question_index]

    def get_question_at(self, role: Optional[Role], position: Position) -> Optional[Question]:
        return self.get_current_question(role, position.section_index, position.question_index)

    def clamp_position(self, role: Optional[Role], position: Position) -> Optional[Position]:
        """First real slot at or after ``position``; None once past the last section."""
        section_index = max(position.section_index, 0)
        question_index = max(position.question_index, 0)
        while section_index < self.get_total_sections_for_role(role):
            if question_index < len(self.get_section(role, section_index).questions):
                return Position(section_index, question_index)
            section_index += 1
            question_index = 0
        return None

    def last_position(self, role: Optional[Role]) -> Optional[Position]:
        total = self.get_total_sections_for_role(role)
        if not total:
            return None
        return Position(total - 1, len(self.get_section(role, total - 1).questions) - 1)

    def get_section_title(self, role: Optional[Role], section_index: int) -> str:
        section = self.get_section(role, section_index)
        return section.title if section else ""

    def get_total_sections_for_role(self, role: Optional[Role]) -> int:
        flow = self.get_flow(role)
        return len(flow.sections) if flow else 0

    def is_end_of_section(self, role: Optional[Role], section_index: int, question_index: int) -> bool:
        section = self.get_section(role, section_index)
        if section is None:
            return True
        return question_index >= len(section.questions) - 1

    def is_end_of_flow(self, role: Optional[Role], section_index: int, question_index: int) -> bool:
        total = self.get_total_sections_for_role(role)
        return section_index >= total - 1 and self.is_end_of_section(role, section_index, question_index)

    def is_multi_select_question(
        self, role: Optional[Role], section_index: int, question_index: int
    ) -> bool:
        question = self.get_current_question(role, section_index, question_index)
        return question is not None and question.is_multi_select


DEFAULT_QUESTION_TABLE = QuestionTable()
