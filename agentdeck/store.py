"""Observable per-AgentKey state for rendering layers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
import threading
from typing import Protocol

from ._types import Message

logger = logging.getLogger(__name__)


class StateSink(Protocol):
    """Receives one write per reconstructor transition."""

    def publish(self, agent_key: str, messages: list[Message], loading: bool) -> None: ...


@dataclass(frozen=True)
class AgentSnapshot:
    """Point-in-time view of one conversation."""

    messages: tuple[Message, ...] = ()
    loading: bool = False

    @property
    def streaming_message(self) -> Message | None:
        for message in reversed(self.messages):
            if message.is_streaming:
                return message
        return None


Listener = Callable[[str, AgentSnapshot], None]

_EMPTY = AgentSnapshot()


class MessageStore:
    """In-memory StateSink. Listeners run synchronously on the publishing thread.

    Usage:
        store = MessageStore()
        store.subscribe(key, lambda key, snap: render(snap.messages))
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshots: dict[str, AgentSnapshot] = {}
        self._listeners: dict[str, list[Listener]] = {}

    def publish(self, agent_key: str, messages: list[Message], loading: bool) -> None:
        snapshot = AgentSnapshot(messages=tuple(messages), loading=loading)
        with self._lock:
            self._snapshots[agent_key] = snapshot
            listeners = list(self._listeners.get(agent_key, ()))
        for listener in listeners:
            try:
                listener(agent_key, snapshot)
            except Exception:
                logger.exception("State listener failed for %s", agent_key)

    def snapshot(self, agent_key: str) -> AgentSnapshot:
        with self._lock:
            return self._snapshots.get(agent_key, _EMPTY)

    def messages(self, agent_key: str) -> list[Message]:
        return list(self.snapshot(agent_key).messages)

    def is_loading(self, agent_key: str) -> bool:
        return self.snapshot(agent_key).loading

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._snapshots)

    def subscribe(self, agent_key: str, listener: Listener) -> Callable[[], None]:
        """Register a listener for one key. Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.setdefault(agent_key, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(agent_key)
                if listeners and listener in listeners:
                    listeners.remove(listener)
                    if not listeners:
                        del self._listeners[agent_key]

        return unsubscribe

    def discard(self, agent_key: str) -> None:
        """Forget a key's state and listeners."""
        with self._lock:
            self._snapshots.pop(agent_key, None)
            self._listeners.pop(agent_key, None)
