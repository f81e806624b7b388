"""
PromptX Runtime Core

Capabilities, registry, message bus, human queue, entity conversation loop
and delegation. The Runtime environment lives in ``runtime.environment``.
"""

from .types import (
    CapabilityKind,
    CapabilityState,
    MessageRole,
    ThreadType,
    ToolCall,
    ToolResult,
    Message,
    ChatResponse,
    Thread,
    EnvDataEntry,
    BusEntry,
)

from .capability import Capability, Primitive, sanitize_schema
from .registry import Registry
from .message_bus import MessageBus
from .human_queue import HumanQueue, HumanRequest, QueueEvent
from .context import Context
from .chat import Chat, AnthropicChat
from .entity import Entity
from .loader import LoadReport

__all__ = [
    # Types
    "CapabilityKind",
    "CapabilityState",
    "MessageRole",
    "ThreadType",
    "ToolCall",
    "ToolResult",
    "Message",
    "ChatResponse",
    "Thread",
    "EnvDataEntry",
    "BusEntry",
    # Components
    "Capability",
    "Primitive",
    "sanitize_schema",
    "Registry",
    "MessageBus",
    "HumanQueue",
    "HumanRequest",
    "QueueEvent",
    "Context",
    "Chat",
    "AnthropicChat",
    "Entity",
    "LoadReport",
]
