"""Attribute events from the global feed to sessions.

The server reports the owning session in different places depending on the
event kind. Events with no session id at all are passed through; the
reconstructor's message-id bookkeeping keeps them from leaking into the
wrong conversation.
"""

from typing import Any

from .events import StreamEvent


def _session_id_of(container: Any) -> str | None:
    if isinstance(container, dict):
        value = container.get("sessionID")
        if isinstance(value, str) and value:
            return value
    return None


def extract_session_id(event: StreamEvent) -> str | None:
    """Return the session id from properties, properties.info or properties.part."""
    props = event.properties
    return (
        _session_id_of(props)
        or _session_id_of(props.get("info"))
        or _session_id_of(props.get("part"))
    )


def is_event_for_session(event: StreamEvent, session_id: str) -> bool:
    """True unless the event names a different session."""
    found = extract_session_id(event)
    return found is None or found == session_id
