import re
from datetime import datetime, timezone

# full date-time with optional fraction and offset; date-only values
# and other ISO 8601 shorthands are rejected
_RFC3339_RE = re.compile(
    r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})?"
)


def utc_now() -> "datetime":
    return datetime.now(timezone.utc)


def parse_rfc3339(value: "object") -> "datetime | None":
    """
    parses an RFC3339 timestamp into an aware UTC datetime.
    Returns None when the value is absent, not a string or malformed.
    Values without an offset are taken to be UTC.
    """
    if not isinstance(value, str):
        return None

    value = value.strip()
    if not _RFC3339_RE.fullmatch(value):
        return None

    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def format_rfc3339(value: "datetime") -> "str":
    """
    formats a datetime in the canonical UTC form used by the cursor,
    e.g. 2025-08-01T00:00:00Z. Microseconds are kept when present.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    if value.microsecond:
        return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")
