import datetime


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, matching what the database columns store."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
