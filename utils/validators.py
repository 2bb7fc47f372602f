"""Input validation helpers."""

import re
from datetime import datetime, timezone
from typing import Any, Optional

from core.constants import TaskDefaults
from core.exceptions import ValidationError

URL_RE = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)
SOURCE_TAG_RE = re.compile(r"^[A-Za-z0-9_\-.:]{1,64}$")

# SQLite INTEGER is a signed 64-bit value
SQLITE_INT_MIN = -(2 ** 63)
SQLITE_INT_MAX = 2 ** 63 - 1


def parse_int(value: Any, name: str) -> int:
    """Coerce an id-like value to int; bools, fractions and values SQLite cannot store are rejected."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and re.fullmatch(r"-?\d{1,20}", value.strip()):
        number = int(value.strip())
    else:
        raise ValidationError(f"{name} must be an integer")
    if not SQLITE_INT_MIN <= number <= SQLITE_INT_MAX:
        raise ValidationError(f"{name} is out of range")
    return number


def parse_optional_int(value: Any, name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    return parse_int(value, name)


def _from_epoch(seconds: Any, name: str) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as exc:
        raise ValidationError(f"{name} is out of range") from exc


def parse_timestamp(value: Any, name: str) -> Optional[datetime]:
    """Accept ISO-8601 strings or unix seconds; result is always UTC-aware."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_epoch(value, name)
    if isinstance(value, str):
        text = value.strip()
        if re.fullmatch(r"\d+", text):
            return _from_epoch(int(text), name)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"{name} must be an ISO-8601 timestamp") from exc
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        try:
            return parsed.astimezone(timezone.utc)
        except (ValueError, OverflowError) as exc:
            raise ValidationError(f"{name} is out of range") from exc
    raise ValidationError(f"{name} must be a timestamp")


def validate_task_title(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Task title is required")
    stripped = value.strip()
    if len(stripped) > TaskDefaults.MAX_TITLE_LENGTH:
        raise ValidationError(f"Task title must be at most {TaskDefaults.MAX_TITLE_LENGTH} characters")
    return stripped


def validate_task_url(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if not isinstance(value, str) or len(value) > TaskDefaults.MAX_URL_LENGTH or not URL_RE.match(value):
        raise ValidationError("Task url must be an http(s) URL")
    return value


def validate_bonus_tickets(value: Any) -> int:
    tickets = parse_int(value, "bonus_tickets")
    if not TaskDefaults.MIN_BONUS_TICKETS <= tickets <= TaskDefaults.MAX_BONUS_TICKETS:
        raise ValidationError(
            f"bonus_tickets must be between {TaskDefaults.MIN_BONUS_TICKETS} and {TaskDefaults.MAX_BONUS_TICKETS}"
        )
    return tickets


def validate_source_tag(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if not isinstance(value, str) or not SOURCE_TAG_RE.match(value):
        raise ValidationError("sourceTag may contain letters, digits and _-.: (max 64)")
    return value
