import re

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
TRUE_STRINGS = {"true", "1", "yes", "on", "y", "t"}

REQUIRED_FIELDS = ("email", "last_name", "proxy_email", "question1", "question2")
PHONE_FIELDS = ("phone1", "phone2", "proxy_phone")
ROLE_FIELDS = ("is_attendee", "is_cancelled", "is_monitor", "is_organizer", "is_presenter", "is_sponsor")
# Flags that widen what a session may read or do.
PRIVILEGED_FIELDS = ("is_organizer",)


def is_valid_email(value) -> bool:
    return bool(value) and bool(EMAIL_PATTERN.fullmatch(str(value).strip()))


def to_null(value):
    """Blank strings become None; everything else is trimmed text."""
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def to_bool(value, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def is_valid_phone(value) -> bool:
    cleaned = to_null(value)
    if cleaned is None:
        return True
    digits = re.sub(r"\D", "", cleaned)
    return 10 <= len(digits) <= 15


def is_blank(value) -> bool:
    return to_null(value) is None


def missing_required_fields(payload: dict, partial: bool = False) -> list[str]:
    """Required fields that are absent or blank.

    On a partial update only the fields actually sent are checked, so a
    required field can be left out but never cleared.
    """
    if partial:
        return [name for name in REQUIRED_FIELDS if name in payload and is_blank(payload[name])]
    return [name for name in REQUIRED_FIELDS if is_blank(payload.get(name))]


def invalid_phone_fields(payload: dict) -> list[str]:
    return [name for name in PHONE_FIELDS if name in payload and not is_valid_phone(payload[name])]


def to_snake(name: str) -> str:
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    name = re.sub(r"[-\s]+", "_", name)
    return name.lower()
