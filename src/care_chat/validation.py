"""Field type detection and free-text validation."""

import re
from dataclasses import dataclass
from typing import Optional

from .flows import Question, QuestionTable
from .models import FieldType, Role

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EMAIL_IN_TEXT_REGEX = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_IN_TEXT_REGEX = re.compile(r"\+[0-9]{1,3}\s[0-9]{3}\s[0-9]{3,4}")
PHONE_SEPARATORS_REGEX = re.compile(r"[\s\-().]")
NAME_REGEX = re.compile(r"^[A-Za-z\s\-']+$")
BUDGET_REGEX = re.compile(
    r"^\$?\s?\d+(\.\d{1,2})?(\s?-\s?\$?\s?\d+(\.\d{1,2})?)?(\s?/\s?(hour|hr))?$",
    re.IGNORECASE,
)

PLACEHOLDERS = {
    FieldType.EMAIL: "name@example.com",
    FieldType.PHONE: "+1 868 123 4567",
    FieldType.NAME: "Your name",
    FieldType.BUDGET: "$20-30/hour or Negotiable",
}
DEFAULT_PLACEHOLDER = "Type your answer..."


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    error_message: Optional[str] = None


VALID = ValidationResult(is_valid=True)


def detect_field_type_from_question(question: Optional[Question]) -> Optional[FieldType]:
    """Classify a script question by keywords in its id and label."""
    if question is None:
        return None

    label = question.label.lower()
    question_id = question.id.lower()

    if "email" in label or "email" in question_id:
        return FieldType.EMAIL
    if any(key in label for key in ("phone", "contact number", "telephone")) or any(
        key in question_id for key in ("phone", "contact_number")
    ):
        return FieldType.PHONE
    if "name" in label or "name" in question_id:
        return FieldType.NAME
    if "budget" in label or "budget" in question_id or any(
        key in label for key in ("cost", "price", "per hour")
    ):
        return FieldType.BUDGET
    return None


def detect_field_type_from_message(content: Optional[str]) -> Optional[FieldType]:
    """Guess the expected input from the wording of the last bot message."""
    if not content:
        return None

    text = content.lower()
    if "email" in text or "e-mail" in text or EMAIL_IN_TEXT_REGEX.search(content):
        return FieldType.EMAIL
    if (
        any(key in text for key in ("phone", "contact number", "telephone", "call you"))
        or PHONE_IN_TEXT_REGEX.search(content)
    ):
        return FieldType.PHONE
    if any(key in text for key in ("name", "what should i call you", "who am i talking to")):
        return FieldType.NAME
    if any(key in text for key in ("budget", "price", "per hour", "$/hour", "$")):
        return FieldType.BUDGET
    return None


def detect_field_type(
    table: QuestionTable,
    role: Optional[Role],
    section_index: int,
    question_index: int,
    last_bot_message: Optional[str] = None,
) -> Optional[FieldType]:
    """Field type for the current slot; falls back to scanning the last bot message."""
    if role is None:
        return None
    question = table.get_current_question(role, section_index, question_index)
    if question is not None:
        return detect_field_type_from_question(question)
    return detect_field_type_from_message(last_bot_message)


def placeholder_for(field_type: Optional[FieldType]) -> str:
    if field_type is None:
        return DEFAULT_PLACEHOLDER
    return PLACEHOLDERS[field_type]


def validate_chat_input(text: str, field_type: Optional[FieldType]) -> ValidationResult:
    """Check free text against the format rules of ``field_type``."""
    if not text or not text.strip():
        return ValidationResult(False, "This field cannot be empty")

    value = text.strip()

    match field_type:
        case FieldType.EMAIL:
            if not EMAIL_REGEX.match(value):
                return ValidationResult(
                    False, "Please enter a valid email address (example@domain.com)"
                )
            return VALID
        case FieldType.PHONE:
            return _validate_phone(value)
        case FieldType.NAME:
            if len(value) < 2:
                return ValidationResult(False, "Name must be at least 2 characters")
            if not NAME_REGEX.match(value):
                return ValidationResult(
                    False,
                    "Please use only letters, spaces, hyphens, and apostrophes in your name",
                )
            return VALID
        case FieldType.BUDGET:
            if not BUDGET_REGEX.match(value) and "negotiable" not in value.lower():
                return ValidationResult(
                    False,
                    "Please enter a valid budget amount (e.g., $20-30/hour or Negotiable)",
                )
            return VALID
        case _:
            return VALID


def _validate_phone(value: str) -> ValidationResult:
    number = PHONE_SEPARATORS_REGEX.sub("", value)

    if number.startswith("+"):
        if not re.fullmatch(r"\+\d{8,15}", number):
            return ValidationResult(
                False,
                "International format should be +[country code][number] (8-15 digits total)",
            )
        if number.startswith("+1868") and len(number) != 12:
            return ValidationResult(
                False, "Trinidad & Tobago numbers should be +1868 followed by 7 digits"
            )
        if number.startswith("+1") and len(number) != 12:
            return ValidationResult(False, "US/Canada numbers should be +1 followed by 10 digits")
        return VALID

    if not re.fullmatch(r"\d{7,15}", number):
        return ValidationResult(
            False, "Local format should be 7-15 digits (will auto-format to international)"
        )
    return VALID
