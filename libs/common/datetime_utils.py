"""Datetime utilities for timezone-aware UTC timestamps.

Usage:
    from libs.common.datetime_utils import utc_now

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

Operations that stamp business timestamps (delivered_at, confirmed_at, ...)
take a ``clock`` callable instead of calling ``utc_now`` directly, so tests
can pin time. Routes obtain it through the ``get_clock`` dependency.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime.

    This replaces the deprecated datetime.utcnow() which returns naive datetimes.
    Always use this for timestamps in the database.
    """
    return datetime.now(timezone.utc)


def get_clock() -> Clock:
    """FastAPI dependency returning the time source for business timestamps."""
    return utc_now
