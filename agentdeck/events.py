"""
Assistant server event stream parser.

Consumes the global ``GET /event`` Server-Sent-Events feed and turns each
``data:`` frame into a typed event. Two server vocabularies exist:

- modern: ``message.updated``, ``message.part.updated``, ``session.status``,
  ``session.idle``
- legacy: ``message.created``, ``message.part.delta``, ``message.completed``

Both are normalized here into one canonical set of event classes so that
consumers only handle a single vocabulary.

Event payload shape: ``{"type": str, "properties": {...}}``.
"""

from collections.abc import Generator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import json
import logging
from typing import Any

from ._exceptions import ParseError
from ._types import Role, _created_at

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Canonical event kinds produced by the parser."""

    SERVER_CONNECTED = "server.connected"
    HEARTBEAT = "server.heartbeat"

    MESSAGE_STARTED = "message.updated"
    PART_UPDATED = "message.part.updated"
    MESSAGE_COMPLETED = "message.completed"

    SESSION_STATUS = "session.status"
    SESSION_IDLE = "session.idle"

    # Unknown/custom events
    UNKNOWN = "unknown"


# Wire type -> canonical type. Legacy names fold into their modern counterpart.
WIRE_TYPES: dict[str, EventType] = {
    "server.connected": EventType.SERVER_CONNECTED,
    "server.heartbeat": EventType.HEARTBEAT,
    "heartbeat": EventType.HEARTBEAT,
    "message.updated": EventType.MESSAGE_STARTED,
    "message.created": EventType.MESSAGE_STARTED,
    "message.part.updated": EventType.PART_UPDATED,
    "message.part.delta": EventType.PART_UPDATED,
    "message.completed": EventType.MESSAGE_COMPLETED,
    "session.status": EventType.SESSION_STATUS,
    "session.idle": EventType.SESSION_IDLE,
}

LEGACY_TYPES = frozenset({"message.created", "message.part.delta", "message.completed"})

BUSY_STATUSES = frozenset({"busy", "running", "pending"})
IDLE_STATUS = "idle"


@dataclass
class StreamEvent:
    """Base class for all stream events. ``raw`` is the decoded JSON payload."""

    type: EventType
    raw: dict[str, Any]

    @property
    def wire_type(self) -> str:
        """Event type exactly as the server sent it."""
        value = self.raw.get("type")
        return value if isinstance(value, str) else "unknown"

    @property
    def properties(self) -> dict[str, Any]:
        props = self.raw.get("properties")
        return props if isinstance(props, dict) else {}

    @property
    def is_legacy(self) -> bool:
        return self.wire_type in LEGACY_TYPES

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> list["StreamEvent"]:
        """Parse event from a decoded JSON payload.

        Returns:
            List of StreamEvent objects. Empty when the payload is missing
            fields its type requires.
        """
        if not isinstance(data, dict):
            return []

        wire_type = data.get("type")
        event_type = EventType.UNKNOWN
        if isinstance(wire_type, str):
            event_type = WIRE_TYPES.get(wire_type, EventType.UNKNOWN)
        props = data.get("properties")
        if not isinstance(props, dict):
            props = {}

        event: StreamEvent

        if event_type == EventType.SERVER_CONNECTED:
            event = ServerConnectedEvent(type=event_type, raw=data)
        elif event_type == EventType.HEARTBEAT:
            event = HeartbeatEvent(type=event_type, raw=data)
        elif event_type == EventType.MESSAGE_STARTED:
            info = props.get("info")
            if not isinstance(info, dict) or not isinstance(info.get("id"), str):
                logger.debug("Dropping %s without info.id", wire_type)
                return []
            try:
                role = Role(info.get("role"))
            except ValueError:
                logger.debug("Dropping %s with unknown role %r", wire_type, info.get("role"))
                return []
            event = MessageStartedEvent(
                type=event_type,
                raw=data,
                message_id=info["id"],
                role=role,
                created=_created_at(info),
            )
        elif event_type == EventType.PART_UPDATED:
            part = props.get("part")
            if not isinstance(part, dict) or not isinstance(part.get("type"), str):
                logger.debug("Dropping %s without part", wire_type)
                return []
            message_id = part.get("messageID") or props.get("messageID")
            if not isinstance(message_id, str) or not message_id:
                logger.debug("Dropping %s without messageID", wire_type)
                return []
            delta = props.get("delta")
            if wire_type == "message.part.delta" and part.get("type") == "text":
                # Legacy deltas carry the increment in part.text.
                delta = part.get("text")
                part = {k: v for k, v in part.items() if k != "text"}
            event = PartUpdatedEvent(
                type=event_type,
                raw=data,
                message_id=message_id,
                part=part,
                delta=delta if isinstance(delta, str) and delta else None,
            )
        elif event_type == EventType.MESSAGE_COMPLETED:
            message_id = props.get("messageID")
            if not isinstance(message_id, str):
                info = props.get("info")
                message_id = info.get("id") if isinstance(info, dict) else None
            event = MessageCompletedEvent(
                type=event_type,
                raw=data,
                message_id=message_id if isinstance(message_id, str) else None,
            )
        elif event_type == EventType.SESSION_STATUS:
            status = props.get("status")
            # Status arrives either as {"type": "idle"} or as a bare string.
            status_type = status.get("type") if isinstance(status, dict) else status
            if not isinstance(status_type, str):
                logger.debug("Dropping session.status without status")
                return []
            event = SessionStatusEvent(type=event_type, raw=data, status=status_type)
        elif event_type == EventType.SESSION_IDLE:
            event = SessionIdleEvent(type=event_type, raw=data)
        else:
            # Return base event for unknown types
            event = StreamEvent(type=event_type, raw=data)

        return [event]


@dataclass
class ServerConnectedEvent(StreamEvent):
    """First event on a fresh subscription; proves the stream is live."""


@dataclass
class HeartbeatEvent(StreamEvent):
    """Keep-alive."""


@dataclass
class MessageStartedEvent(StreamEvent):
    """A message was created or its metadata changed."""

    message_id: str
    role: Role
    created: datetime | None = None


@dataclass
class PartUpdatedEvent(StreamEvent):
    """A part of a message changed. ``delta`` is the text increment, if any."""

    message_id: str
    part: dict[str, Any]
    delta: str | None = None

    @property
    def part_type(self) -> str:
        return str(self.part.get("type"))


@dataclass
class MessageCompletedEvent(StreamEvent):
    """Legacy end-of-message marker."""

    message_id: str | None = None


@dataclass
class SessionStatusEvent(StreamEvent):
    """Session state change: idle, busy, pending, running, ..."""

    status: str

    @property
    def is_busy(self) -> bool:
        return self.status in BUSY_STATUSES

    @property
    def is_idle(self) -> bool:
        return self.status == IDLE_STATUS


@dataclass
class SessionIdleEvent(StreamEvent):
    """Session finished processing."""


class EventStreamParser:
    """
    Parser for the assistant server event stream.

    Handles Server-Sent Events (SSE) format with JSON payloads. Each
    ``data:`` line carries one complete JSON event.
    """

    @staticmethod
    def decode_frame(frame: str) -> dict[str, Any] | None:
        """
        Decode one SSE frame into its JSON payload.

        Args:
            frame: SSE frame content (one or more lines)

        Returns:
            Decoded payload, or None if the frame carries no data

        Raises:
            ParseError: if the data is not a JSON object
        """
        if not frame or not frame.strip():
            return None

        data_lines: list[str] = []
        for raw_line in frame.splitlines():
            stripped = raw_line.strip()
            if not stripped or stripped.startswith(":"):
                continue
            if raw_line.startswith("data:"):
                data_lines.append(raw_line[5:].lstrip(" "))

        if not data_lines:
            return None

        payload = "\n".join(data_lines).strip()
        if not payload:
            return None

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid event JSON: {payload[:200]}") from e
        if not isinstance(data, dict):
            raise ParseError(f"Event payload is not an object: {payload[:200]}")
        return data

    @staticmethod
    def parse_sse_line(line: str) -> list[StreamEvent]:
        """
        Parse a single SSE frame into StreamEvent objects.

        Malformed frames are logged and dropped.

        Returns:
            List of StreamEvents (possibly empty)
        """
        try:
            data = EventStreamParser.decode_frame(line)
        except ParseError as e:
            logger.warning("Failed to parse SSE frame: %s", e)
            return []
        if data is None:
            return []
        return StreamEvent.from_dict(data)

    @staticmethod
    def parse_stream(response: object) -> Generator[StreamEvent, None, None]:
        """
        Parse SSE stream from HTTP response.

        ``iter_lines`` reassembles lines split across network chunks.
        ``chunk_size=None`` yields each chunk as soon as it arrives, which
        relies on the server sending the feed with chunked transfer
        encoding. A response without it would be read to EOF first.

        Args:
            response: requests.Response object with streaming enabled

        Yields:
            StreamEvent objects
        """
        for line in response.iter_lines(chunk_size=None):  # type: ignore[attr-defined]
            if isinstance(line, bytes):
                line = line.decode("utf-8", errors="replace")

            if not line.startswith("data:"):
                # Blank separators, comments, event:/id:/retry: fields.
                continue

            yield from EventStreamParser.parse_sse_line(line)
