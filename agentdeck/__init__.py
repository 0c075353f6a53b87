"""
agentdeck - client for local AI coding-assistant servers

Follows a server's global event feed, attributes events to sessions and
rebuilds each assistant reply from its streamed parts.
"""

__version__ = "0.1.0"

from ._exceptions import (
    AgentDeckError,
    ConflictError,
    ConnectionError,
    NotConnectedError,
    NotFoundError,
    ParseError,
    RequestError,
    TimeoutError,
    ValidationError,
)
from ._types import (
    AgentInfo,
    HealthStatus,
    Message,
    ModelRef,
    OtherPart,
    Part,
    ProviderCatalog,
    ReasoningPart,
    Role,
    Session,
    TextPart,
    ToolInvocationPart,
    ToolState,
)
from .client import EventSubscription, StreamClient
from .config import ClientConfig
from .conversation import AgentConversation, agent_key
from .events import EventStreamParser, EventType, StreamEvent
from .filtering import extract_session_id, is_event_for_session
from .reconstructor import AgentState, MessageReconstructor
from .registry import ConnectionRegistry
from .store import AgentSnapshot, MessageStore, StateSink

__all__ = [
    "AgentConversation",
    "AgentDeckError",
    "AgentInfo",
    "AgentSnapshot",
    "AgentState",
    "ClientConfig",
    "ConflictError",
    "ConnectionError",
    "ConnectionRegistry",
    "EventStreamParser",
    "EventSubscription",
    "EventType",
    "HealthStatus",
    "Message",
    "MessageReconstructor",
    "MessageStore",
    "ModelRef",
    "NotConnectedError",
    "NotFoundError",
    "OtherPart",
    "ParseError",
    "Part",
    "ProviderCatalog",
    "ReasoningPart",
    "RequestError",
    "Role",
    "Session",
    "StateSink",
    "StreamClient",
    "StreamEvent",
    "TextPart",
    "TimeoutError",
    "ToolInvocationPart",
    "ToolState",
    "ValidationError",
    "agent_key",
    "extract_session_id",
    "is_event_for_session",
]
