"""
Utility functions for the chat relay.
"""

import uuid
from datetime import datetime, timezone


def new_message_id() -> str:
    """Return a fresh globally unique message id."""
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    """
    Current server time as ISO-8601 UTC with microseconds and Z suffix.

    Fixed width, so lexicographic order matches chronological order.
    """
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
