from datetime import UTC, datetime


def utcnow_naive():
    """Return current UTC timestamp as naive datetime for DB timestamp columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def parse_iso_datetime(value):
    """Parse an ISO-8601 string into a naive UTC datetime.

    Returns None for empty input and raises ValueError for malformed text.
    Offset-aware values are converted to UTC before the offset is dropped.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def isoformat_or_none(value):
    return value.isoformat() if value else None
