"""
PromptX Runtime Type Definitions

Core data types: messages, tool calls, threads, bus entries and env data.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Optional, Mapping, Union


def utcnow() -> datetime:
    """Naive UTC timestamp (the form SQLite round-trips)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================
# Enums
# ============================================


class CapabilityKind(str, Enum):
    """Capability variant"""

    PRIMITIVE = "primitive"
    ENTITY = "entity"


class CapabilityState(str, Enum):
    """Capability execution state"""

    IDLE = "idle"
    WORKING = "working"
    AWAITING_TOOL_RESULTS = "awaiting_tool_results"


class MessageRole(str, Enum):
    """Message role"""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ThreadType(str, Enum):
    """Thread type"""

    ROOT = "root"
    DELEGATION = "delegation"


# ============================================
# Tool Calls
# ============================================


@dataclass
class ToolCall:
    """
    Tool call requested by the chat model.

    Supports attribute access (``tc.name``) and mapping access (``tc["name"]``)
    so live and rehydrated calls are interchangeable.
    """

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        if key not in ("id", "name", "arguments"):
            raise KeyError(key)
        return getattr(self, key)

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except KeyError:
            return default

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
        }

    @classmethod
    def from_dict(cls, data: Union["ToolCall", Mapping[str, Any]]) -> "ToolCall":
        if isinstance(data, ToolCall):
            return data
        return cls(
            id=data.get("id"),
            name=data.get("name"),
            arguments=data.get("arguments") or {},
        )


@dataclass
class ToolResult:
    """Result of one tool call, fed back to the chat model"""

    tool_call_id: str
    name: str
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_call_id": self.tool_call_id,
            "name": self.name,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, data: Union["ToolResult", Mapping[str, Any]]) -> "ToolResult":
        if isinstance(data, ToolResult):
            return data
        return cls(
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
            content=data.get("content"),
        )


# ============================================
# Messages
# ============================================


@dataclass
class Message:
    """Single message in an entity's conversation history"""

    role: MessageRole
    content: Optional[str] = None
    sender: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    results: Optional[List[ToolResult]] = None
    usage: Optional[Dict[str, Any]] = None
    message_id: Optional[int] = None

    def __post_init__(self):
        # An assistant turn that calls tools must wait for their results before writing prose
        if self.role == MessageRole.ASSISTANT and self.tool_calls and self.content:
            raise ValueError("assistant message with tool calls must not carry content")

    @classmethod
    def user(cls, content: str, sender: str = "human") -> "Message":
        return cls(role=MessageRole.USER, content=content, sender=sender)

    @classmethod
    def assistant(
        cls,
        content: Optional[str] = None,
        tool_calls: Optional[List[ToolCall]] = None,
        usage: Optional[Dict[str, Any]] = None,
    ) -> "Message":
        return cls(
            role=MessageRole.ASSISTANT,
            content=content,
            tool_calls=tool_calls or None,
            usage=usage,
        )

    @classmethod
    def tool(cls, results: List[ToolResult]) -> "Message":
        return cls(role=MessageRole.TOOL, results=list(results))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role.value}
        if self.role == MessageRole.USER:
            data["content"] = self.content
            data["from"] = self.sender
        elif self.role == MessageRole.ASSISTANT:
            data["content"] = self.content
            if self.tool_calls:
                data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        else:
            data["results"] = [r.to_dict() for r in self.results or []]
        return data


@dataclass
class ChatResponse:
    """Normalized response from the chat collaborator"""

    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None
    raw: Any = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


# ============================================
# Threads and Shared Data
# ============================================


@dataclass
class Thread:
    """Persisted conversation thread (a.k.a. session)"""

    id: str
    owner: str
    thread_type: ThreadType
    created_at: datetime
    updated_at: datetime
    name: Optional[str] = None
    parent_thread_id: Optional[str] = None
    parent_entity_name: Optional[str] = None
    parent_message_id: Optional[int] = None
    message_count: int = 0

    @property
    def is_root(self) -> bool:
        return self.parent_thread_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "name": self.name,
            "thread_type": self.thread_type.value,
            "parent_thread_id": self.parent_thread_id,
            "parent_entity_name": self.parent_entity_name,
            "message_count": self.message_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class EnvDataEntry:
    """Key/value entry shared by every thread under one root thread"""

    root_thread_id: str
    key: str
    short_description: str
    value: Any
    stored_by: str
    updated_at: datetime

    def to_dict(self, include_value: bool = True) -> Dict[str, Any]:
        data = {
            "key": self.key,
            "short_description": self.short_description,
            "stored_by": self.stored_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_value:
            data["value"] = self.value
        return data


# ============================================
# Message Bus
# ============================================


@dataclass
class BusEntry:
    """One inter-capability message on the bus"""

    timestamp: datetime
    sender: str
    recipient: str
    message: Any
    summary: str
    thread_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "from": self.sender,
            "to": self.recipient,
            "message": self.message,
            "summary": self.summary,
            "thread_id": self.thread_id,
        }
