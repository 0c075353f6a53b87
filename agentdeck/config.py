"""Client configuration from environment variables."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
import os
from typing import TypeVar

T = TypeVar("T")

ENV_PREFIX = "AGENTDECK_"


def _env(
    environ: Mapping[str, str], name: str, convert: Callable[[str], T], default: T
) -> T:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return convert(raw.strip())
    except ValueError:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}") from None


@dataclass
class ClientConfig:
    """Connection settings shared by the client, registry and CLI."""

    host: str = "127.0.0.1"
    port: int | None = None
    request_timeout: float = 30.0
    handshake_timeout: float = 5.0
    ready_retries: int = 10
    ready_delay: float = 0.3
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClientConfig:
        """Read ``AGENTDECK_*`` variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            host=_env(env, "HOST", str, defaults.host),
            port=_env(env, "PORT", int, defaults.port),
            request_timeout=_env(env, "REQUEST_TIMEOUT", float, defaults.request_timeout),
            handshake_timeout=_env(env, "HANDSHAKE_TIMEOUT", float, defaults.handshake_timeout),
            ready_retries=_env(env, "READY_RETRIES", int, defaults.ready_retries),
            ready_delay=_env(env, "READY_DELAY", float, defaults.ready_delay),
            log_level=_env(env, "LOG_LEVEL", str.upper, defaults.log_level),
        )

    def base_url(self, port: int | None = None) -> str:
        port = self.port if port is None else port
        if port is None:
            raise ValueError(f"No port configured. Pass --port or set {ENV_PREFIX}PORT.")
        return f"http://{self.host}:{port}"
