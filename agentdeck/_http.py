"""Thin HTTP client wrapping requests.Session with error mapping and retry."""

import logging
import time
from typing import Any

import requests

from ._exceptions import STATUS_MAP, ConnectionError, RequestError

logger = logging.getLogger(__name__)

# Retry config
_MAX_RETRIES = 3
_INITIAL_BACKOFF = 0.5  # seconds
_RETRYABLE_STATUS = {502, 503, 504}
# Prompts and aborts have side effects; only reads are replayed.
_RETRYABLE_METHODS = {"GET"}


def _raise_for_status(resp: requests.Response, *, method: str = "", path: str = "") -> None:
    """Map HTTP error responses to typed exceptions carrying the body text."""
    body = resp.text or ""
    message = f"HTTP {resp.status_code}"
    try:
        data = resp.json()
        # Server errors look like {"data": {"message": ...}} or {"error": ...}
        if isinstance(data, dict):
            detail = data.get("data") if isinstance(data.get("data"), dict) else {}
            error = data.get("error")
            if isinstance(error, dict):
                error = error.get("message")
            message = detail.get("message") or error or data.get("message") or message
    except ValueError:
        logger.debug("Error body is not JSON: %s", body[:200] if body else "empty")
        if body:
            message = f"{message}: {body[:200]}"

    resp.close()
    exc_cls = STATUS_MAP.get(resp.status_code, RequestError)
    raise exc_cls(str(message), status_code=resp.status_code, body=body, method=method, path=path)


class HTTPClient:
    """Minimal JSON HTTP client with error mapping and automatic retry of reads."""

    def __init__(self, base_url: str, timeout: float = 30):
        self._session = requests.Session()
        self._session.headers["Content-Type"] = "application/json"
        self._session.headers["Accept"] = "application/json"
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def _request_with_retry(
        self, method: str, url: str, *, is_stream: bool = False, **kwargs: Any
    ) -> requests.Response:
        """Send request, retrying GETs on transport errors and 502/503/504."""
        attempts = _MAX_RETRIES if method.upper() in _RETRYABLE_METHODS and not is_stream else 1
        # Streams block on read indefinitely; only the connect phase is bounded.
        timeout = (self._timeout, None) if is_stream else self._timeout
        for attempt in range(attempts):
            try:
                resp = self._session.request(
                    method, url, timeout=timeout, stream=is_stream, **kwargs
                )
            except (requests.Timeout, requests.ConnectionError) as e:
                logger.warning("Request failed (attempt %d/%d): %s", attempt + 1, attempts, e)
                if attempt < attempts - 1:
                    time.sleep(_INITIAL_BACKOFF * (2**attempt))
                    continue
                raise ConnectionError(str(e), method=method, path=url) from e

            if resp.ok:
                return resp

            if resp.status_code not in _RETRYABLE_STATUS or attempt == attempts - 1:
                _raise_for_status(resp, method=method, path=url)

            delay = _INITIAL_BACKOFF * (2**attempt)
            logger.debug(
                "Retrying %s %s (attempt %d, delay %.1fs)", method, url, attempt + 1, delay
            )
            resp.close()
            time.sleep(delay)

        raise ConnectionError("Max retries exceeded", method=method, path=url)

    def request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        """Send request and raise typed exception on error."""
        return self._request_with_retry(method, f"{self._base_url}{path}", **kwargs)

    def get(self, path: str, **kwargs: Any) -> Any:
        """GET and decode the JSON body."""
        return self.request("GET", path, **kwargs).json()

    def post(self, path: str, **kwargs: Any) -> requests.Response:
        return self.request("POST", path, **kwargs)

    def stream(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        """Send request with stream=True for SSE parsing."""
        return self._request_with_retry(method, f"{self._base_url}{path}", is_stream=True, **kwargs)

    def close(self) -> None:
        self._session.close()
