"""
PromptX error types.

Recoverable conditions (unknown or disallowed capabilities, missing human
requests) are reported as tool results or booleans, not raised.
"""

from typing import Optional


class PromptXError(Exception):
    """Base class for runtime errors."""


class CapabilityExistsError(PromptXError):
    """A capability with the same name is already registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Capability already registered: {name}")


class DefinitionLoadError(PromptXError):
    """A single primitive or entity definition could not be loaded."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load {path}: {reason}")


class ThreadNotFoundError(PromptXError):
    """A referenced thread does not exist."""

    def __init__(self, thread_id: Optional[str]) -> None:
        self.thread_id = thread_id
        super().__init__(f"Thread not found: {thread_id}")


class EntityBusyError(PromptXError):
    """The entity is in the middle of a conversation and cannot switch threads."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Entity is busy: {name}")
