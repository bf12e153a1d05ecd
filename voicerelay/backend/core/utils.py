"""
Core Utilities.

Shared utility functions used across the backend.
"""

import uuid
from datetime import datetime, timezone


def utc_now() -> datetime:
    """
    Return current UTC time as timezone-naive datetime.

    All datetime values in the application are timezone-naive and
    assumed to be UTC.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_session_id() -> str:
    """Return a short random identifier for a relay session."""
    return uuid.uuid4().hex[:12]
