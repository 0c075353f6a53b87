"""
Rebuild assistant messages from interleaved partial updates.

Each AgentKey owns one AgentState: an append-only message list, a pointer to
the message currently streaming, and a loading flag. The reconstructor moves
that state between two phases:

    Idle ──message.updated(assistant, new id)──▶ Streaming
    Streaming ──session idle / message.completed──▶ Idle

Only an assistant ``message.updated`` may create a message. Part updates for
messages that were never announced are dropped, because the server echoes the
user's own parts on the same feed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import threading
import uuid

from ._types import (
    Message,
    OtherPart,
    Part,
    ReasoningPart,
    Role,
    TextPart,
    ToolInvocationPart,
    part_from_api,
    text_content,
    tool_part_from_api,
)
from .events import (
    MessageCompletedEvent,
    MessageStartedEvent,
    PartUpdatedEvent,
    SessionIdleEvent,
    SessionStatusEvent,
    StreamEvent,
)
from .store import StateSink

logger = logging.getLogger(__name__)


@dataclass
class AgentState:
    """Reconstructed conversation state for one AgentKey."""

    messages: list[Message] = field(default_factory=list)
    live_id: str | None = None
    loading: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def live(self) -> Message | None:
        if self.live_id is None:
            return None
        return self.find(self.live_id)

    def find(self, message_id: str) -> Message | None:
        # Newest first; the live message is almost always last.
        for message in reversed(self.messages):
            if message.id == message_id:
                return message
        return None

    def snapshot(self) -> tuple[list[Message], bool]:
        with self.lock:
            return [m.snapshot() for m in self.messages], self.loading


class MessageReconstructor:
    """Applies canonical stream events to an AgentState and publishes each change.

    Usage:
        rec = MessageReconstructor("task-1:conv-1", sink=store)
        for event in events:
            rec.apply(event)
    """

    def __init__(
        self,
        agent_key: str,
        state: AgentState | None = None,
        sink: StateSink | None = None,
    ):
        self.agent_key = agent_key
        self.state = state if state is not None else AgentState()
        self._sink = sink

    @property
    def messages(self) -> list[Message]:
        return self.state.snapshot()[0]

    @property
    def loading(self) -> bool:
        return self.state.loading

    @property
    def live_message(self) -> Message | None:
        with self.state.lock:
            live = self.state.live
            return live.snapshot() if live is not None else None

    def _publish(self) -> None:
        if self._sink is None:
            return
        messages, loading = self.state.snapshot()
        self._sink.publish(self.agent_key, messages, loading)

    # -- stream events ----------------------------------------------------

    def apply(self, event: StreamEvent) -> bool:
        """Apply one event. Returns True if state changed (and was published)."""
        with self.state.lock:
            if isinstance(event, MessageStartedEvent):
                changed = self._on_message_started(event)
            elif isinstance(event, PartUpdatedEvent):
                changed = self._on_part_updated(event)
            elif isinstance(event, SessionStatusEvent):
                changed = self._on_status(event)
            elif isinstance(event, SessionIdleEvent):
                changed = self._on_idle()
            elif isinstance(event, MessageCompletedEvent):
                changed = self._on_completed(event)
            else:
                changed = False
            if changed:
                self._publish()
            return changed

    def _finalize_live(self) -> bool:
        live = self.state.live
        self.state.live_id = None
        if live is None or not live.is_streaming:
            return False
        live.is_streaming = False
        logger.debug("[%s] finalized %s", self.agent_key, live.id)
        return True

    def _on_message_started(self, event: MessageStartedEvent) -> bool:
        if event.role is not Role.ASSISTANT:
            return False
        state = self.state
        if event.message_id == state.live_id:
            return False

        existing = state.find(event.message_id)
        if existing is not None:
            if not existing.is_streaming:
                # Finalized messages are never reopened.
                return False
            self._finalize_live()
            state.live_id = existing.id
            state.loading = True
            logger.debug("[%s] adopted %s as live", self.agent_key, existing.id)
            return True

        self._finalize_live()
        message = Message(
            id=event.message_id,
            role=Role.ASSISTANT,
            is_streaming=True,
            timestamp=event.created or datetime.now(timezone.utc),
        )
        state.messages.append(message)
        state.live_id = message.id
        state.loading = True
        logger.debug("[%s] started %s", self.agent_key, message.id)
        return True

    def _target_for(self, message_id: str) -> Message | None:
        state = self.state
        live = state.live
        if live is not None:
            return live if live.id == message_id else None
        candidate = state.find(message_id)
        if candidate is None or not candidate.is_streaming:
            return None
        state.live_id = candidate.id
        return candidate

    def _on_part_updated(self, event: PartUpdatedEvent) -> bool:
        message = self._target_for(event.message_id)
        if message is None:
            logger.debug(
                "[%s] dropped %s part for unknown message %s",
                self.agent_key,
                event.part_type,
                event.message_id,
            )
            return False

        part_type = event.part_type
        if part_type == "text":
            return self._apply_text(message, event)
        if part_type in ("tool", "tool-invocation"):
            tool = tool_part_from_api(event.part)
            if tool is None:
                return False
            self._replace_or_append(
                message,
                tool,
                lambda p: isinstance(p, ToolInvocationPart)
                and p.invocation_id == tool.invocation_id,
            )
            return True
        if part_type == "reasoning":
            return self._apply_reasoning(message, event)

        other = part_from_api(event.part)
        if not isinstance(other, OtherPart):
            return False
        part_id = other.part_id
        if part_id is None:
            message.parts.append(other)
        else:
            self._replace_or_append(
                message, other, lambda p: isinstance(p, OtherPart) and p.part_id == part_id
            )
        return True

    @staticmethod
    def _replace_or_append(message: Message, part: Part, match) -> None:
        for i, existing in enumerate(message.parts):
            if match(existing):
                message.parts[i] = part
                return
        message.parts.append(part)

    def _apply_text(self, message: Message, event: PartUpdatedEvent) -> bool:
        full = event.part.get("text")
        if event.delta is not None:
            content = message.content + event.delta
        elif isinstance(full, str):
            content = full
        else:
            return False
        self._replace_or_append(message, TextPart(content), lambda p: isinstance(p, TextPart))
        message.content = text_content(message.parts)
        return True

    def _apply_reasoning(self, message: Message, event: PartUpdatedEvent) -> bool:
        current = next((p for p in message.parts if isinstance(p, ReasoningPart)), None)
        full = event.part.get("text")
        if isinstance(full, str):
            content = full
        elif event.delta is not None:
            content = (current.content if current else "") + event.delta
        else:
            return False
        self._replace_or_append(
            message, ReasoningPart(content), lambda p: isinstance(p, ReasoningPart)
        )
        return True

    def _on_status(self, event: SessionStatusEvent) -> bool:
        if event.is_idle:
            return self._on_idle()
        if event.is_busy and not self.state.loading:
            self.state.loading = True
            return True
        return False

    def _on_idle(self) -> bool:
        finalized = self._finalize_live()
        was_loading = self.state.loading
        self.state.loading = False
        return finalized or was_loading

    def _on_completed(self, event: MessageCompletedEvent) -> bool:
        finalized = False
        if event.message_id is not None and event.message_id == self.state.live_id:
            finalized = self._finalize_live()
        was_loading = self.state.loading
        self.state.loading = False
        return finalized or was_loading

    # -- caller-side edits ------------------------------------------------

    def add_user_message(self, text: str, message_id: str | None = None) -> Message:
        """Append the caller's own prompt. The stream never creates user messages."""
        message = Message(
            id=message_id or f"local-{uuid.uuid4().hex}",
            role=Role.USER,
            content=text,
            parts=[TextPart(text)],
        )
        with self.state.lock:
            self.state.messages.append(message)
            self._publish()
        return message.snapshot()

    def load_messages(self, messages: list[Message]) -> None:
        """Replace the list with server history, e.g. after reconnecting."""
        with self.state.lock:
            self.state.messages = [m.snapshot() for m in messages]
            for message in self.state.messages:
                message.is_streaming = False
            self.state.live_id = None
            self.state.loading = False
            self._publish()

    def clear(self) -> None:
        with self.state.lock:
            self.state.messages = []
            self.state.live_id = None
            self.state.loading = False
            self._publish()
