"""
PromptX

Runtime for capabilities (chat-backed entities and deterministic primitives)
that message, delegate to and wait on one another.
"""

from .config import RuntimeConfig
from .errors import (
    PromptXError,
    CapabilityExistsError,
    DefinitionLoadError,
    ThreadNotFoundError,
    EntityBusyError,
)
from .runtime import Entity, Primitive, Context, Chat, AnthropicChat
from .persistence import ThreadStore
from .runtime.environment import Runtime

__all__ = [
    "RuntimeConfig",
    "PromptXError",
    "CapabilityExistsError",
    "DefinitionLoadError",
    "ThreadNotFoundError",
    "EntityBusyError",
    "Entity",
    "Primitive",
    "Context",
    "Chat",
    "AnthropicChat",
    "ThreadStore",
    "Runtime",
]
