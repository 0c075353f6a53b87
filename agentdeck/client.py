"""Stream client for a local assistant server: HTTP endpoints plus the global event feed."""

from __future__ import annotations

from collections.abc import Callable
import logging
import threading
import time
from typing import TYPE_CHECKING, Any

from ._exceptions import AgentDeckError, ConnectionError, NotConnectedError
from ._http import HTTPClient
from ._types import (
    AgentInfo,
    GrepMatch,
    HealthStatus,
    Message,
    ModelRef,
    ProviderCatalog,
    Session,
)
from .events import EventStreamParser, StreamEvent

if TYPE_CHECKING:
    import requests

    from .config import ClientConfig

logger = logging.getLogger(__name__)


EventHandler = Callable[[StreamEvent], None]
ErrorHandler = Callable[[AgentDeckError], None]

DEFAULT_HOST = "127.0.0.1"


class EventSubscription:
    """A live ``GET /event`` stream read on a background thread.

    Calling the subscription (or ``close()``) stops it. Once close returns,
    the handler is never invoked again.

    Usage:
        sub = client.subscribe_to_events(print)
        ...
        sub()  # or sub.close()
    """

    def __init__(
        self,
        response: requests.Response,
        handler: EventHandler,
        *,
        on_error: ErrorHandler | None = None,
        name: str = "agentdeck-events",
    ):
        self._response = response
        self._handler = handler
        self._on_error = on_error
        self._closed = threading.Event()
        # Reentrant so a handler may close its own subscription.
        self._dispatch_lock = threading.RLock()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> EventSubscription:
        self._thread.start()
        return self

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _dispatch(self, event: StreamEvent) -> bool:
        """Invoke the handler unless closed. Returns False once closed."""
        with self._dispatch_lock:
            if self._closed.is_set():
                return False
            try:
                self._handler(event)
            except Exception:
                # One bad event must not end the stream.
                logger.exception("Event handler failed for %s", event.wire_type)
            return True

    def _run(self) -> None:
        error: AgentDeckError | None = None
        try:
            for event in EventStreamParser.parse_stream(self._response):
                if not self._dispatch(event):
                    return
            if not self._closed.is_set():
                error = ConnectionError("Event stream closed by server", path="/event")
        except Exception as e:
            if not self._closed.is_set():
                error = ConnectionError(f"Event stream failed: {e}", path="/event")
        finally:
            self._response.close()

        if error is None:
            return
        logger.warning("%s", error.message)
        self._closed.set()
        if self._on_error is not None:
            self._on_error(error)

    def close(self) -> None:
        """Stop the stream (idempotent)."""
        self._closed.set()
        # Wait out an in-flight handler call.
        with self._dispatch_lock:
            pass
        self._response.close()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def __call__(self) -> None:
        self.close()

    def __enter__(self) -> EventSubscription:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class StreamClient:
    """Client for one assistant server.

    Usage:
        client = StreamClient(4096)
        session = client.create_session("Fix the tests")
        sub = client.subscribe_to_events(handle)
        client.send_prompt_async(session.id, "run pytest and fix failures")
    """

    def __init__(
        self,
        endpoint: str | int | None = None,
        *,
        host: str = DEFAULT_HOST,
        timeout: float = 30,
    ):
        self._host = host
        self._timeout = timeout
        self._http: HTTPClient | None = None
        self._session_id: str | None = None
        self._subscriptions: list[EventSubscription] = []
        self._lock = threading.Lock()
        if endpoint is not None:
            self.connect(endpoint)

    @classmethod
    def from_config(cls, config: ClientConfig, endpoint: str | int | None = None) -> StreamClient:
        if endpoint is None and config.port is not None:
            endpoint = config.port
        return cls(endpoint, host=config.host, timeout=config.request_timeout)

    def _resolve(self, endpoint: str | int) -> str:
        if isinstance(endpoint, int) or (isinstance(endpoint, str) and endpoint.isdigit()):
            return f"http://{self._host}:{int(endpoint)}"
        if not endpoint.startswith(("http://", "https://")):
            raise ValueError(f"Endpoint must be a port or an http(s) URL, got {endpoint!r}")
        return endpoint.rstrip("/")

    # -- connection -------------------------------------------------------

    def connect(self, endpoint: str | int) -> None:
        """Record the server address. Reconnecting elsewhere disconnects first."""
        base_url = self._resolve(endpoint)
        if self._http is not None:
            if self._http.base_url == base_url:
                return
            self.disconnect()
        self._http = HTTPClient(base_url, timeout=self._timeout)
        logger.debug("Connected to %s", base_url)

    def disconnect(self) -> None:
        """Close open subscriptions and forget the address and current session."""
        with self._lock:
            subscriptions, self._subscriptions = self._subscriptions, []
        for sub in subscriptions:
            sub.close()
        if self._http is not None:
            logger.debug("Disconnected from %s", self._http.base_url)
            self._http.close()
        self._http = None
        self._session_id = None

    @property
    def is_connected(self) -> bool:
        return self._http is not None

    @property
    def base_url(self) -> str | None:
        return self._http.base_url if self._http is not None else None

    def _require_http(self) -> HTTPClient:
        if self._http is None:
            raise NotConnectedError("Client not connected. Call connect(endpoint) first.")
        return self._http

    # -- sessions ---------------------------------------------------------

    @property
    def current_session(self) -> str | None:
        return self._session_id

    def set_session(self, session_id: str | None) -> None:
        self._session_id = session_id

    def create_session(self, title: str | None = None) -> Session:
        body: dict = {}
        if title is not None:
            body["title"] = title
        resp = self._require_http().post("/session", json=body)
        session = Session.from_dict(resp.json())
        self._session_id = session.id
        return session

    def list_sessions(self) -> list[Session]:
        data = self._require_http().get("/session")
        return [Session.from_dict(s) for s in data or []]

    def get_session_messages(self, session_id: str) -> list[Message]:
        """Full history of a session, parts normalized like the live stream."""
        data = self._require_http().get(f"/session/{session_id}/message")
        return [Message.from_dict(m) for m in data or [] if isinstance(m, dict) and "info" in m]

    def abort_session(self, session_id: str) -> bool:
        resp = self._require_http().post(f"/session/{session_id}/abort")
        try:
            data = resp.json()
        except ValueError:
            return True
        return data if isinstance(data, bool) else True

    # -- prompts ----------------------------------------------------------

    @staticmethod
    def _prompt_body(text: str, model: str | ModelRef | None, agent: str | None) -> dict:
        body: dict[str, Any] = {"parts": [{"type": "text", "text": text}]}
        if model is not None:
            ref = model if isinstance(model, ModelRef) else ModelRef.parse(model)
            body["model"] = ref.to_dict()
        if agent is not None:
            body["agent"] = agent
        return body

    def send_prompt(
        self,
        session_id: str,
        text: str,
        *,
        model: str | ModelRef | None = None,
        agent: str | None = None,
    ) -> Message:
        """Send a prompt and block until the assistant's reply is finished."""
        resp = self._require_http().post(
            f"/session/{session_id}/message", json=self._prompt_body(text, model, agent)
        )
        return Message.from_dict(resp.json())

    def send_prompt_async(
        self,
        session_id: str,
        text: str,
        *,
        model: str | ModelRef | None = None,
        agent: str | None = None,
    ) -> None:
        """Dispatch a prompt without waiting. Progress arrives on the event stream.

        Raises:
            RequestError: non-2xx response, with ``status_code`` and ``body``.
        """
        resp = self._require_http().post(
            f"/session/{session_id}/prompt_async", json=self._prompt_body(text, model, agent)
        )
        resp.close()

    # -- events -----------------------------------------------------------

    def subscribe_to_events(
        self, handler: EventHandler, *, on_error: ErrorHandler | None = None
    ) -> EventSubscription:
        """Open the global event stream and deliver every event to ``handler``.

        The stream is opened before this returns, so transport failures raise
        ``ConnectionError`` here. Later failures are reported to ``on_error``.
        """
        resp = self._require_http().stream(
            "GET", "/event", headers={"Accept": "text/event-stream"}
        )
        sub = EventSubscription(resp, handler, on_error=on_error)
        with self._lock:
            self._subscriptions = [s for s in self._subscriptions if not s.closed]
            self._subscriptions.append(sub)
        return sub.start()

    # -- server -----------------------------------------------------------

    def health_check(self) -> HealthStatus:
        return HealthStatus.from_dict(self._require_http().get("/global/health"))

    def wait_for_ready(self, max_retries: int = 10, delay: float = 0.3) -> bool:
        """Poll health until the server reports healthy or retries run out."""
        for attempt in range(max_retries):
            try:
                if self.health_check().healthy:
                    return True
            except AgentDeckError as e:
                logger.debug("Server not ready (attempt %d/%d): %s", attempt + 1, max_retries, e)
            if attempt < max_retries - 1:
                time.sleep(delay)
        return False

    def get_providers(self) -> ProviderCatalog:
        return ProviderCatalog.from_dict(self._require_http().get("/provider") or {})

    def get_agents(self) -> list[AgentInfo]:
        data = self._require_http().get("/agent")
        return [AgentInfo.from_dict(a) for a in data or [] if isinstance(a, dict)]

    # -- workspace --------------------------------------------------------

    def read_file(self, path: str) -> str:
        data = self._require_http().get("/file/content", params={"path": path})
        return data.get("content", "") if isinstance(data, dict) else ""

    def find_files(self, query: str, type: str | None = None) -> list[str]:
        """Fuzzy file search. ``type`` narrows to "file" or "directory"."""
        params = {"query": query}
        if type is not None:
            params["type"] = type
        return list(self._require_http().get("/find/file", params=params) or [])

    def grep(self, pattern: str) -> list[GrepMatch]:
        data = self._require_http().get("/find", params={"pattern": pattern})
        return [GrepMatch.from_dict(m) for m in data or [] if isinstance(m, dict)]
