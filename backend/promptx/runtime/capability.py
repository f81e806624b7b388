"""
PromptX Capabilities

Base interface shared by primitives (deterministic code) and entities
(chat-backed). Everything the registry holds implements this.
"""

import copy
from typing import Any, Dict, Optional, TYPE_CHECKING

from .types import CapabilityKind, CapabilityState

if TYPE_CHECKING:
    from .context import Context


def empty_schema() -> Dict[str, Any]:
    return {"type": "object", "properties": {}, "required": []}


def sanitize_schema(schema: Any) -> Any:
    """
    Return a copy of ``schema`` where every array-typed node has ``items``.

    Several chat APIs reject array schemas that omit it.
    """
    if not isinstance(schema, dict):
        return schema

    schema = dict(schema)

    if schema.get("type") == "array" and "items" not in schema:
        schema["items"] = {}

    if isinstance(schema.get("properties"), dict):
        schema["properties"] = {
            key: sanitize_schema(value) for key, value in schema["properties"].items()
        }

    if isinstance(schema.get("items"), dict):
        schema["items"] = sanitize_schema(schema["items"])

    return schema


class Capability:
    """
    Named, invokable unit with a description and a parameter schema.

    Subclasses implement ``receive(message, context)``. Primitives may
    implement it as a plain function or a coroutine; callers await the
    result when it is awaitable.
    """

    kind: CapabilityKind = CapabilityKind.PRIMITIVE

    name: str = ""
    description: str = ""
    parameters: Dict[str, Any] = empty_schema()

    def __init__(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ):
        if name is not None:
            self.name = name
        if description is not None:
            self.description = description
        # Instances never share the class-level schema dict
        self.parameters = copy.deepcopy(parameters if parameters is not None else self.parameters)
        self.state = CapabilityState.IDLE

    def receive(self, message: Any, context: "Context") -> Any:
        raise NotImplementedError(f"{type(self).__name__} must implement receive()")

    def descriptor(self) -> Dict[str, Any]:
        """Tool descriptor handed to the chat collaborator."""
        return {
            "name": self.name,
            "description": self.description,
            "schema": sanitize_schema(self.parameters),
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} state={self.state.value}>"


class Primitive(Capability):
    """Deterministic capability; state stays idle because it runs to completion."""

    kind = CapabilityKind.PRIMITIVE


def get_argument(message: Any, key: str, default: Any = None) -> Any:
    """Read a named argument from a tool call payload (mapping or bare string)."""
    if isinstance(message, dict):
        value = message.get(key)
        return default if value is None else value
    if isinstance(message, str) and message:
        return message
    return default
