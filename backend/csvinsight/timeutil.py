"""Server-assigned timestamps"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC now, the form stored in DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
