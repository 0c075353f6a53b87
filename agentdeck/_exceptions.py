"""Typed error hierarchy for the assistant server client."""


class AgentDeckError(Exception):
    """Base exception for all agentdeck errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        method: str | None = None,
        path: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body
        self.method = method
        self.path = path


class ConnectionError(AgentDeckError):
    """Transport could not be established or was closed unexpectedly."""


class NotConnectedError(ConnectionError):
    """Client has no base address. Call connect() first."""


class TimeoutError(AgentDeckError):
    """Handshake event was not observed within the configured window."""


class RequestError(AgentDeckError):
    """Non-success response from the server. Carries status and body text."""


class ValidationError(RequestError):
    """400 / 422 — the server rejected the request payload."""


class NotFoundError(RequestError):
    """404 — session or resource does not exist."""


class ConflictError(RequestError):
    """409 — session is busy or the request conflicts with its state."""


class ParseError(AgentDeckError):
    """Malformed event frame. Logged and dropped by the stream reader."""


# Map HTTP status codes to exception classes.
STATUS_MAP: dict[int, type[RequestError]] = {
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
}
