from datetime import datetime, timezone

from errors import ValidationError


def as_utc(value):
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_utc_timestamp(raw, field='session_date'):
    """Parse an ISO-8601 instant supplied by the client.

    Session times are always UTC instants. A value without an offset is read
    as UTC, never as server local time.
    """
    if not raw:
        raise ValidationError(f'Missing required field: {field}')
    text = str(raw).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f'Invalid timestamp for {field}: {raw}')
    return as_utc(parsed)


def isoformat_utc(value):
    if value is None:
        return None
    return as_utc(value).isoformat().replace('+00:00', 'Z')
