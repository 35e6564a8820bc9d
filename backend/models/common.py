from datetime import datetime, timezone


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Mongo hands back naive UTC datetimes; store them the same way."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
