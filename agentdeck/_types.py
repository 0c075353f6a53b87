"""Dataclass models mirroring assistant server response schemas."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union


def parse_timestamp(value: Any) -> datetime | None:
    """Parse epoch milliseconds, epoch seconds or an ISO-8601 string."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        # Servers report epoch millis; anything this small is seconds.
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _created_at(info: dict) -> datetime | None:
    """Message/session creation time: time.created, created, or createdAt."""
    time_info = info.get("time")
    if isinstance(time_info, dict) and time_info.get("created") is not None:
        return parse_timestamp(time_info["created"])
    return parse_timestamp(info.get("created") or info.get("createdAt"))


class Role(str, Enum):
    """Message author."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ToolState(str, Enum):
    """Lifecycle of a tool invocation as shown to the user."""

    PENDING = "pending"
    RESULT = "result"
    ERROR = "error"

    @classmethod
    def from_status(cls, status: Any) -> ToolState:
        """Map server tool statuses (pending/running/completed/error) onto three states."""
        if status in ("completed", "result"):
            return cls.RESULT
        if status == "error":
            return cls.ERROR
        return cls.PENDING


@dataclass(frozen=True)
class TextPart:
    content: str
    type: str = field(default="text", init=False)


@dataclass(frozen=True)
class ToolInvocationPart:
    invocation_id: str
    tool_name: str
    state: ToolState = ToolState.PENDING
    args: Any = None
    result: Any = None
    type: str = field(default="tool-invocation", init=False)


@dataclass(frozen=True)
class ReasoningPart:
    content: str
    type: str = field(default="reasoning", init=False)


@dataclass(frozen=True)
class OtherPart:
    """Passthrough for part kinds the reconstructor does not interpret."""

    kind: str
    raw: dict
    type: str = field(default="other", init=False)

    @property
    def part_id(self) -> str | None:
        value = self.raw.get("id")
        return value if isinstance(value, str) else None


Part = Union[TextPart, ToolInvocationPart, ReasoningPart, OtherPart]


def tool_part_from_api(data: dict) -> ToolInvocationPart | None:
    """Normalize a server tool part (or legacy tool-invocation part).

    Returns None when the part carries no invocation id.
    """
    if data.get("type") == "tool-invocation":
        invocation_id = data.get("toolInvocationId") or data.get("id")
        if not isinstance(invocation_id, str) or not invocation_id:
            return None
        return ToolInvocationPart(
            invocation_id=invocation_id,
            tool_name=str(data.get("toolName") or ""),
            state=ToolState.from_status(data.get("state")),
            args=data.get("args"),
            result=data.get("result"),
        )

    invocation_id = data.get("callID") or data.get("id")
    if not isinstance(invocation_id, str) or not invocation_id:
        return None
    state = data.get("state")
    if not isinstance(state, dict):
        state = {"status": state} if isinstance(state, str) else {}
    tool_state = ToolState.from_status(state.get("status"))
    result = state.get("output")
    if tool_state is ToolState.ERROR and result is None:
        result = state.get("error")
    return ToolInvocationPart(
        invocation_id=invocation_id,
        tool_name=str(data.get("tool") or ""),
        state=tool_state,
        args=state.get("input"),
        result=result,
    )


def part_from_api(data: dict) -> Part | None:
    """Convert a server part payload into a Part. None if it cannot be interpreted."""
    part_type = data.get("type")
    if part_type == "text":
        text = data.get("text")
        return TextPart(content=text if isinstance(text, str) else "")
    if part_type in ("tool", "tool-invocation"):
        return tool_part_from_api(data)
    if part_type == "reasoning":
        text = data.get("text")
        return ReasoningPart(content=text if isinstance(text, str) else "")
    if isinstance(part_type, str) and part_type:
        return OtherPart(kind=part_type, raw=dict(data))
    return None


def text_content(parts: list[Part]) -> str:
    """Join the non-empty text parts of a message, one per line."""
    return "\n".join(p.content for p in parts if isinstance(p, TextPart) and p.content)


@dataclass
class Message:
    """A chat message with its ordered parts."""

    id: str
    role: Role
    content: str = ""
    parts: list[Part] = field(default_factory=list)
    is_streaming: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def snapshot(self) -> Message:
        """Copy safe to hand to readers while the original keeps mutating."""
        return replace(self, parts=list(self.parts))

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        """Build from a server message payload: {"info": {...}, "parts": [...]}."""
        info = data["info"]
        parts = [p for p in (part_from_api(raw) for raw in data.get("parts") or []) if p]
        return cls(
            id=info["id"],
            role=Role(info.get("role", "assistant")),
            content=text_content(parts),
            parts=parts,
            is_streaming=False,
            timestamp=_created_at(info) or datetime.now(timezone.utc),
        )


@dataclass
class Session:
    """A server-side conversation."""

    id: str
    title: str | None
    created: datetime | None
    updated: datetime | None

    @classmethod
    def from_dict(cls, data: dict) -> Session:
        time_info = data.get("time") if isinstance(data.get("time"), dict) else {}
        return cls(
            id=data["id"],
            title=data.get("title"),
            created=parse_timestamp(data.get("created", time_info.get("created"))),
            updated=parse_timestamp(data.get("updated", time_info.get("updated"))),
        )


@dataclass
class HealthStatus:
    healthy: bool
    version: str

    @classmethod
    def from_dict(cls, data: dict) -> HealthStatus:
        return cls(healthy=bool(data.get("healthy", False)), version=str(data.get("version", "")))


@dataclass
class ModelRef:
    """Model selector sent with prompts."""

    provider_id: str
    model_id: str

    @classmethod
    def parse(cls, value: str) -> ModelRef:
        """Split "provider/model-id". Model ids may themselves contain slashes."""
        provider_id, sep, model_id = value.partition("/")
        if not sep or not provider_id or not model_id:
            raise ValueError(f"Model must be 'provider/model-id', got {value!r}")
        return cls(provider_id=provider_id, model_id=model_id)

    def to_dict(self) -> dict:
        return {"providerID": self.provider_id, "modelID": self.model_id}

    def __str__(self) -> str:
        return f"{self.provider_id}/{self.model_id}"


@dataclass
class Model:
    id: str
    name: str
    context_limit: int | None = None
    output_limit: int | None = None

    @classmethod
    def from_dict(cls, data: dict, fallback_id: str | None = None) -> Model:
        model_id = data.get("id") or fallback_id or ""
        limit = data.get("limit") if isinstance(data.get("limit"), dict) else {}
        return cls(
            id=model_id,
            name=data.get("name") or model_id,
            context_limit=limit.get("context"),
            output_limit=limit.get("output"),
        )


@dataclass
class Provider:
    id: str
    name: str
    models: list[Model]

    @classmethod
    def from_dict(cls, data: dict) -> Provider:
        raw_models = data.get("models")
        if isinstance(raw_models, list):
            models = [Model.from_dict(m) for m in raw_models if isinstance(m, dict)]
        elif isinstance(raw_models, dict):
            models = [
                Model.from_dict(m, fallback_id=model_id)
                for model_id, m in raw_models.items()
                if isinstance(m, dict)
            ]
        else:
            models = []
        return cls(id=data["id"], name=data.get("name") or data["id"], models=models)


@dataclass
class ProviderCatalog:
    """Providers known to the server plus the default model per provider."""

    providers: list[Provider]
    default: dict[str, str]
    connected: list[str]

    @classmethod
    def from_dict(cls, data: dict) -> ProviderCatalog:
        raw = data.get("all") or data.get("providers") or []
        return cls(
            providers=[Provider.from_dict(p) for p in raw if isinstance(p, dict) and "id" in p],
            default=dict(data.get("default") or {}),
            connected=list(data.get("connected") or []),
        )


@dataclass
class AgentInfo:
    """An agent profile configured on the server (e.g. "build", "plan")."""

    id: str
    name: str
    description: str
    mode: str

    @classmethod
    def from_dict(cls, data: dict) -> AgentInfo:
        name = data.get("name") or data.get("id") or "Unknown"
        return cls(
            id=data.get("id") or name,
            name=name,
            description=data.get("description") or "",
            mode=data.get("mode") or "all",
        )


@dataclass
class GrepMatch:
    """One hit from the server's workspace text search."""

    path: str
    line_number: int
    lines: str

    @classmethod
    def from_dict(cls, data: dict) -> GrepMatch:
        # Newer servers wrap strings as {"text": ...}.
        path = data.get("path")
        lines = data.get("lines")
        return cls(
            path=path.get("text", "") if isinstance(path, dict) else str(path or ""),
            line_number=int(data.get("line_number") or 0),
            lines=lines.get("text", "") if isinstance(lines, dict) else str(lines or ""),
        )
