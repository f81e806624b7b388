"""
Capability management tools: create entities at runtime, grant and revoke
declared capabilities, and list what the registry holds.
"""

import re
from typing import Any, Optional, Tuple

from ..runtime.capability import Primitive
from ..runtime.context import Context
from ..runtime.types import CapabilityKind

ENTITY_MODIFIED = "entity_modified"

_NAME = re.compile(r"^[a-z][a-z0-9_]*$")


def _resolve_entity(context: Context, target: Optional[str]) -> Tuple[Any, Optional[str]]:
    """Return ``(entity, error)`` for a target name, where "self" is the caller."""
    if target == "self" or not target:
        target = context.calling_entity
    if not target:
        return None, "Error: No target entity (use a name, or 'self' from inside an entity)"

    entity = context.registry.get(target)
    if entity is None:
        return None, f"Error: Entity '{target}' not found"
    if entity.kind != CapabilityKind.ENTITY:
        return None, f"Error: '{target}' is not an entity (capabilities can only be added to entities)"
    return entity, None


def _field(message: Any, key: str) -> Any:
    return message.get(key) if isinstance(message, dict) else None


class CreateCapability(Primitive):
    name = "create_capability"
    description = (
        "Create a new entity: an LLM-backed specialist with its own identity and capabilities. "
        "It becomes available immediately."
    )
    parameters = {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "Name for the entity (lowercase, underscores allowed)"},
            "description": {"type": "string", "description": "Brief description of what this entity does"},
            "capabilities": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of capabilities this entity can use",
            },
            "identity": {"type": "string", "description": "Who is this entity? Its personality and role."},
            "behavior": {"type": "string", "description": "How should this entity behave?"},
        },
        "required": ["name", "description"],
    }

    def receive(self, message: Any, context: Context) -> str:
        cap_name = _field(message, "name") or ""
        description = _field(message, "description") or ""

        if not _NAME.match(cap_name):
            return "Error: Name must be lowercase letters, numbers, and underscores, starting with a letter."
        if context.registry.exists(cap_name):
            return f"Error: A capability named '{cap_name}' already exists."

        capabilities = _field(message, "capabilities") or []
        if isinstance(capabilities, str):
            capabilities = [c.strip() for c in capabilities.split(",") if c.strip()]
        identity = _field(message, "identity") or "You are a helpful assistant."
        behavior = _field(message, "behavior") or "Help the user with their request."

        title = " ".join(part.capitalize() for part in cap_name.split("_"))
        body = f"# {title}\n\n## Identity\n\n{identity}\n\n## Behavior\n\n{behavior}\n"
        config = {"name": cap_name, "description": description, "capabilities": list(capabilities)}

        entity = context.runtime.create_entity(config, body)

        listed = ", ".join(entity.declared_capabilities) or "(none)"
        return f"Created entity '{cap_name}' with capabilities: {listed}. It's now available."


class AddCapability(Primitive):
    name = "add_capability"
    description = (
        "Add a capability to an entity, allowing it to use new tools. Can target self or another entity."
    )
    parameters = {
        "type": "object",
        "properties": {
            "target": {
                "type": "string",
                "description": "Name of the entity to add the capability to. Use 'self' for the current entity.",
            },
            "capability": {
                "type": "string",
                "description": "Name of the capability to add (must already exist in the registry)",
            },
        },
        "required": ["target", "capability"],
    }

    def receive(self, message: Any, context: Context) -> str:
        entity, error = _resolve_entity(context, _field(message, "target"))
        if error:
            return error

        capability = _field(message, "capability")
        if not capability or not context.registry.exists(capability):
            return f"Error: Capability '{capability}' does not exist"
        if capability in entity.declared_capabilities:
            return f"'{entity.name}' already has the '{capability}' capability"

        entity.declared_capabilities.append(capability)
        entity.save()
        context.runtime.notify(ENTITY_MODIFIED, {"entity": entity.name, "added": capability})
        return f"Added '{capability}' to '{entity.name}'. It can now use this capability."


class RemoveCapability(Primitive):
    name = "remove_capability"
    description = (
        "Remove a capability from an entity's declared capabilities. "
        "The underlying capability stays registered."
    )
    parameters = {
        "type": "object",
        "properties": {
            "target": {
                "type": "string",
                "description": "Name of the entity to remove the capability from. Use 'self' for the current entity.",
            },
            "capability": {"type": "string", "description": "Name of the capability to remove"},
        },
        "required": ["target", "capability"],
    }

    def receive(self, message: Any, context: Context) -> str:
        entity, error = _resolve_entity(context, _field(message, "target"))
        if error:
            return error

        capability = _field(message, "capability")
        if capability not in entity.declared_capabilities:
            return f"'{entity.name}' does not have '{capability}' in its declared capabilities."

        entity.declared_capabilities.remove(capability)
        saved = entity.save()
        context.runtime.notify(ENTITY_MODIFIED, {"entity": entity.name, "removed": capability})

        if saved:
            return f"Removed '{capability}' from '{entity.name}' and saved to file."
        return f"Removed '{capability}' from '{entity.name}' (in-memory only, could not save to file)."


class ListCapabilities(Primitive):
    name = "list_capabilities"
    description = (
        "List all available capabilities (primitives and entities) in the system. "
        "Useful for discovering what tools exist before creating new ones."
    )
    parameters = {
        "type": "object",
        "properties": {
            "type": {
                "type": "string",
                "enum": ["all", "primitives", "entities"],
                "description": "Filter by type. Default is 'all'.",
            },
        },
        "required": [],
    }

    def receive(self, message: Any, context: Context) -> str:
        kind = _field(message, "type") or "all"
        if kind == "primitives":
            capabilities = context.registry.primitives()
        elif kind == "entities":
            capabilities = context.registry.entities()
        else:
            capabilities = context.registry.all()

        if not capabilities:
            return "No capabilities found."

        lines = []
        for cap in capabilities:
            label = "[Entity]" if cap.kind == CapabilityKind.ENTITY else "[Primitive]"
            lines.append(f"- {cap.name} {label}: {cap.description}")
        return "Available capabilities:\n" + "\n".join(lines)
