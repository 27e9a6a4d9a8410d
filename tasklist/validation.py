"""Input checks applied before any task state changes."""
from datetime import datetime
from typing import Optional, Type, Union

from .errors import ValidationError
from .models.task import Category, Priority
from .schemas.task import MAX_TEXT_LENGTH
from .utils.datetime_helper import parse_timestamp, utcnow

# Characters escaped to keep markup out of task text
_MARKUP_ESCAPES = str.maketrans({
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
})


def sanitize_text(value: str) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().translate(_MARKUP_ESCAPES)


def clean_text(raw_text: Optional[str]) -> str:
    """Trim, sanitise and length-check task text."""
    if not raw_text or not raw_text.strip():
        raise ValidationError("Please enter a task description before adding!")
    text = sanitize_text(raw_text)
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(f"Todo text cannot exceed {MAX_TEXT_LENGTH} characters")
    return text


def clean_choice(value: Union[str, None], enum_type: Type, default) -> str:
    if value is None or value == "":
        return default.value
    try:
        return enum_type(value).value
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"Invalid {enum_type.__name__.lower()} '{value}' (expected one of: {allowed})")


def clean_priority(value: Union[str, None]) -> str:
    return clean_choice(value, Priority, Priority.MEDIUM)


def clean_category(value: Union[str, None]) -> str:
    return clean_choice(value, Category, Category.GENERAL)


def clean_deadline(value: Union[str, datetime, None], now: Optional[datetime] = None) -> Optional[datetime]:
    """Parse a deadline and require it to be strictly in the future."""
    try:
        deadline = parse_timestamp(value)
    except (TypeError, ValueError):
        raise ValidationError("Deadline must be a valid date")
    if deadline is not None and deadline <= (now or utcnow()):
        raise ValidationError("Deadline must be in the future")
    return deadline
