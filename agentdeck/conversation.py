"""UI-facing binding: one conversation wired from registry to state sink."""

from __future__ import annotations

from collections.abc import Callable
import logging

from ._exceptions import ConnectionError
from ._types import Message, ModelRef, Session
from .client import StreamClient
from .events import StreamEvent
from .filtering import is_event_for_session
from .reconstructor import MessageReconstructor
from .registry import ConnectionRegistry
from .store import StateSink

logger = logging.getLogger(__name__)


def agent_key(task_id: str, conversation_id: str) -> str:
    """Key scoping one conversation's state: ``"<task_id>:<conversation_id>"``."""
    return f"{task_id}:{conversation_id}"


class AgentConversation:
    """Drives one conversation against an assistant server.

    Usage:
        registry = ConnectionRegistry()
        store = MessageStore()
        conv = AgentConversation(registry, store, agent_key("t1", "c1"), 4096)
        conv.start("Refactor parser")
        conv.send("split the tokenizer out of parse()")
        ...
        conv.close()
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        sink: StateSink,
        key: str,
        endpoint: str | int,
        *,
        session_id: str | None = None,
        ready_retries: int = 10,
        ready_delay: float = 0.3,
        on_event: Callable[[StreamEvent], None] | None = None,
    ):
        self._registry = registry
        self._endpoint = endpoint
        self.key = key
        self.session_id = session_id
        self._ready_retries = ready_retries
        self._ready_delay = ready_delay
        self._reconstructor = MessageReconstructor(key, registry.state(key), sink)
        self._on_event_observer = on_event
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def client(self) -> StreamClient:
        return self._registry.get_client(self.key, self._endpoint)

    @property
    def messages(self) -> list[Message]:
        return self._reconstructor.messages

    @property
    def is_loading(self) -> bool:
        return self._reconstructor.loading

    @property
    def is_ready(self) -> bool:
        return self._registry.is_ready(self.key) and self.session_id is not None

    def _connect(self, timeout: float | None) -> StreamClient:
        client = self.client
        if not client.wait_for_ready(self._ready_retries, self._ready_delay):
            raise ConnectionError(f"Server at {client.base_url} did not become healthy")
        self._registry.establish_connection(self.key, self._endpoint, timeout)
        return client

    def start(self, title: str | None = None, *, timeout: float | None = None) -> Session:
        """Handshake, then create (or reuse) a session and start reconstructing."""
        client = self._connect(timeout)
        if self.session_id is None:
            session = client.create_session(title)
            self.session_id = session.id
        else:
            session = Session(id=self.session_id, title=title, created=None, updated=None)
        client.set_session(self.session_id)
        self._bind()
        return session

    def attach(self, session_id: str, *, timeout: float | None = None) -> None:
        """Bind to an existing session, loading its history first."""
        client = self._connect(timeout)
        self.session_id = session_id
        client.set_session(session_id)
        self._reconstructor.load_messages(client.get_session_messages(session_id))
        self._bind()

    def _bind(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = self._registry.register_handler(self.key, self._on_event)
        logger.debug("[%s] bound to session %s", self.key, self.session_id)

    def _on_event(self, event: StreamEvent) -> None:
        if self.session_id is None or not is_event_for_session(event, self.session_id):
            return
        if self._on_event_observer is not None:
            self._on_event_observer(event)
        self._reconstructor.apply(event)

    def send(
        self,
        text: str,
        *,
        model: str | ModelRef | None = None,
        agent: str | None = None,
    ) -> Message:
        """Append the user message locally, then dispatch the prompt.

        Raises:
            ConnectionError: the handshake has not completed.
        """
        if not self.is_ready:
            raise ConnectionError("Conversation not connected; call start() or attach() first")
        user_message = self._reconstructor.add_user_message(text)
        self.client.send_prompt_async(self.session_id, text, model=model, agent=agent)
        return user_message

    def abort(self) -> bool:
        if self.session_id is None:
            return False
        return self.client.abort_session(self.session_id)

    def reset(self) -> None:
        """Drop every message and the loading flag, keeping the connection."""
        self._reconstructor.clear()

    def close(self, remove: bool = False) -> None:
        """Stop receiving events.

        ``remove=True`` also tears down the connection and clears the
        published state, so no half-streamed message is left behind.
        """
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if remove:
            self._registry.remove_client(self.key)
            self._reconstructor.clear()

    def __enter__(self) -> AgentConversation:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
