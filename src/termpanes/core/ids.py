"""Pane, split and tab identifiers

Ids are opaque uuid4 strings. A pane id doubles as the PTY backend's
session id, so a reattached pane keeps the id of the session it binds to.
"""

import uuid


def new_id() -> str:
    """Return a fresh globally unique id."""
    return str(uuid.uuid4())


def short_id(pane_id: str, length: int = 8) -> str:
    """Get a short display version of an id for logging.

    Args:
        pane_id: The id to shorten
        length: Maximum length (default 8)

    Returns:
        Shortened id for display in logs
    """
    if not pane_id:
        return "unknown"
    return pane_id[:length]
