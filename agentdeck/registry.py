"""
Per-AgentKey connections with readiness gating.

A prompt dispatched right after subscribing can race the subscription setup
and miss the server's first events, since the feed has no replay. The
registry therefore only reports a key as ready once ``server.connected`` has
been observed on a fresh subscription.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import threading
from typing import TYPE_CHECKING

from ._exceptions import AgentDeckError, ConnectionError, TimeoutError
from .client import DEFAULT_HOST, EventHandler, EventSubscription, StreamClient
from .events import HeartbeatEvent, ServerConnectedEvent, StreamEvent
from .reconstructor import AgentState

if TYPE_CHECKING:
    from .config import ClientConfig

logger = logging.getLogger(__name__)

# Events held while no handler is registered for a key.
_BACKLOG_LIMIT = 1000
DEFAULT_HANDSHAKE_TIMEOUT = 5.0

ConnectionLostHandler = Callable[[str, AgentDeckError], None]


@dataclass
class _Entry:
    client: StreamClient
    state: AgentState = field(default_factory=AgentState)
    subscription: EventSubscription | None = None
    ready: bool = False
    handler: EventHandler | None = None
    backlog: deque[StreamEvent] = field(default_factory=lambda: deque(maxlen=_BACKLOG_LIMIT))
    # Bumped whenever the subscription is replaced so late events from a
    # discarded stream are ignored.
    generation: int = 0
    # Buffered events evicted because no handler drained the backlog in time.
    dropped: int = 0
    dispatch_lock: threading.RLock = field(default_factory=threading.RLock)
    connect_lock: threading.Lock = field(default_factory=threading.Lock)


class ConnectionRegistry:
    """One StreamClient, subscription and AgentState per AgentKey.

    Usage:
        registry = ConnectionRegistry()
        registry.establish_connection(key, 4096, timeout=5)
        unsubscribe = registry.register_handler(key, handle_event)
    """

    def __init__(
        self,
        *,
        host: str = DEFAULT_HOST,
        request_timeout: float = 30,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        client_factory: Callable[[], StreamClient] | None = None,
        on_connection_lost: ConnectionLostHandler | None = None,
    ):
        self._client_factory = client_factory or (
            lambda: StreamClient(host=host, timeout=request_timeout)
        )
        self._handshake_timeout = handshake_timeout
        self._on_connection_lost = on_connection_lost
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @classmethod
    def from_config(cls, config: ClientConfig, **kwargs) -> ConnectionRegistry:
        return cls(
            host=config.host,
            request_timeout=config.request_timeout,
            handshake_timeout=config.handshake_timeout,
            **kwargs,
        )

    def _entry(self, agent_key: str) -> _Entry:
        with self._lock:
            entry = self._entries.get(agent_key)
            if entry is None:
                entry = _Entry(client=self._client_factory())
                self._entries[agent_key] = entry
                logger.debug("Created client for %s", agent_key)
            return entry

    def get_client(self, agent_key: str, endpoint: str | int | None = None) -> StreamClient:
        """Get or create the key's client, connecting it if an endpoint is given."""
        client = self._entry(agent_key).client
        if endpoint is not None and not client.is_connected:
            client.connect(endpoint)
        return client

    def state(self, agent_key: str) -> AgentState:
        """Reconstructed message state owned by this key."""
        return self._entry(agent_key).state

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def is_ready(self, agent_key: str) -> bool:
        with self._lock:
            entry = self._entries.get(agent_key)
        if entry is None or not entry.ready:
            return False
        return entry.subscription is not None and not entry.subscription.closed

    # -- handshake --------------------------------------------------------

    def establish_connection(
        self, agent_key: str, endpoint: str | int, timeout: float | None = None
    ) -> None:
        """Subscribe and block until the server confirms the stream is live.

        Raises:
            TimeoutError: ``server.connected`` not seen within ``timeout``.
            ConnectionError: the stream could not be opened or closed early.
        """
        client = self.get_client(agent_key, endpoint)
        entry = self._entry(agent_key)
        wait = self._handshake_timeout if timeout is None else timeout

        with entry.connect_lock:
            if self.is_ready(agent_key):
                return

            with entry.dispatch_lock:
                stale, entry.subscription = entry.subscription, None
                entry.ready = False
                entry.generation += 1
                generation = entry.generation
            if stale is not None:
                logger.debug("Discarding stale subscription for %s", agent_key)
                stale.close()

            connected = threading.Event()
            failures: list[AgentDeckError] = []

            def on_event(event: StreamEvent) -> None:
                if isinstance(event, ServerConnectedEvent):
                    connected.set()
                self._dispatch(agent_key, entry, generation, event)

            def on_error(error: AgentDeckError) -> None:
                failures.append(error)
                with entry.dispatch_lock:
                    current = entry.generation == generation
                    if current:
                        entry.ready = False
                connected.set()
                if current and self._on_connection_lost is not None:
                    self._on_connection_lost(agent_key, error)

            subscription = client.subscribe_to_events(on_event, on_error=on_error)
            entry.subscription = subscription

            if not connected.wait(wait):
                subscription.close()
                entry.subscription = None
                raise TimeoutError(
                    f"Event stream for {agent_key} not confirmed within {wait}s",
                    path="/event",
                )
            if failures:
                subscription.close()
                entry.subscription = None
                raise ConnectionError(
                    f"Event stream for {agent_key} closed before handshake: {failures[0].message}",
                    path="/event",
                )
            entry.ready = True
            logger.debug("Event stream ready for %s", agent_key)

    def _dispatch(
        self, agent_key: str, entry: _Entry, generation: int, event: StreamEvent
    ) -> None:
        with entry.dispatch_lock:
            if generation != entry.generation:
                return
            handler = entry.handler
            if handler is None:
                if not isinstance(event, HeartbeatEvent):
                    if len(entry.backlog) == entry.backlog.maxlen:
                        if not entry.dropped:
                            logger.warning(
                                "Backlog for %s is full (%d events); dropping the oldest",
                                agent_key,
                                entry.backlog.maxlen,
                            )
                        entry.dropped += 1
                    entry.backlog.append(event)
                return
            handler(event)

    # -- handlers ---------------------------------------------------------

    def register_handler(self, agent_key: str, handler: EventHandler) -> Callable[[], None]:
        """Route the key's events to ``handler``, replacing any previous one.

        Events buffered while no handler was registered are delivered first,
        in arrival order. Once the returned callable returns, ``handler`` is
        never invoked again.
        """
        entry = self._entry(agent_key)
        with entry.dispatch_lock:
            entry.handler = handler
            pending = list(entry.backlog)
            entry.backlog.clear()
            if entry.dropped:
                logger.warning(
                    "Delivering backlog for %s after dropping %d events", agent_key, entry.dropped
                )
                entry.dropped = 0
            for event in pending:
                try:
                    handler(event)
                except Exception:
                    logger.exception("Handler failed on buffered %s", event.wire_type)

        def unsubscribe() -> None:
            with entry.dispatch_lock:
                if entry.handler is handler:
                    entry.handler = None

        return unsubscribe

    # -- teardown ---------------------------------------------------------

    def remove_client(self, agent_key: str) -> None:
        """Close the key's stream, disconnect its client and forget its state."""
        with self._lock:
            entry = self._entries.pop(agent_key, None)
        if entry is None:
            return
        with entry.dispatch_lock:
            entry.handler = None
            entry.ready = False
            entry.generation += 1
            entry.backlog.clear()
            entry.dropped = 0
            subscription, entry.subscription = entry.subscription, None
        if subscription is not None:
            subscription.close()
        entry.client.disconnect()
        logger.debug("Removed client for %s", agent_key)

    def close(self) -> None:
        for agent_key in self.keys():
            self.remove_client(agent_key)

    def __enter__(self) -> ConnectionRegistry:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
