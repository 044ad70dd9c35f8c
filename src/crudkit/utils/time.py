"""Time utilities for UTC timestamps."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """
    Get the current time as a timezone-aware UTC datetime.

    Used for ``archived_at`` stamps so every archive agrees on the clock source.
    """
    return datetime.now(timezone.utc)
