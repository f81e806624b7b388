"""
Shared environment data tools.

Every entity in one delegation tree shares the entries stored under the
tree's root thread. The scope is resolved from the calling entity's active
thread, so unrelated trees never see each other's data.
"""

import json
from typing import Any, Optional, Tuple

from ..persistence import UNSET
from ..runtime.capability import Primitive
from ..runtime.context import Context

ENV_DATA_CHANGED = "env_data_changed"

NO_SCOPE = "Error: Could not resolve thread scope (no active session)"
NO_STORE = "Error: Session store not available"
KEY_REQUIRED = "Error: 'key' is required"


def resolve_root_thread(context: Context) -> Optional[str]:
    """Root thread of the calling entity's current thread."""
    if context.store is None or not context.calling_entity:
        return None
    caller = context.registry.get(context.calling_entity)
    thread_id = getattr(caller, "current_thread_id", None)
    if not thread_id:
        return None
    return context.store.resolve_root_thread(thread_id)


class EnvDataPrimitive(Primitive):
    """Shared scope resolution and bus reporting for env data tools"""

    def _scope(self, context: Context) -> Tuple[Optional[str], Optional[str]]:
        """Return ``(root_thread_id, error)``."""
        if context.store is None:
            return None, NO_STORE
        root_thread_id = resolve_root_thread(context)
        if root_thread_id is None:
            return None, NO_SCOPE
        return root_thread_id, None

    def _actor(self, context: Context) -> str:
        return context.calling_entity or "unknown"

    def _publish(self, context: Context, payload: dict) -> None:
        context.bus.publish(self._actor(context), "env_data", payload)

    def _notify(self, context: Context, action: str, root_thread_id: str, key: str) -> None:
        context.runtime.notify(
            ENV_DATA_CHANGED,
            {
                "action": action,
                "root_thread_id": root_thread_id,
                "key": key,
                "stored_by": self._actor(context),
            },
        )


def _field(message: Any, key: str) -> Any:
    return message.get(key) if isinstance(message, dict) else None


class StoreEnvData(EnvDataPrimitive):
    name = "store_env_data"
    description = (
        "Store a key-value pair in the shared environment data for this delegation chain. "
        "All entities in the same delegation tree can access this data. "
        "If the key already exists, it will be overwritten."
    )
    parameters = {
        "type": "object",
        "properties": {
            "key": {
                "type": "string",
                "description": "Namespaced identifier for the data (e.g. 'arc_task', 'findings')",
            },
            "short_description": {
                "type": "string",
                "description": "1-2 sentence summary of what this data contains (shown by list_env_data)",
            },
            "value": {
                "description": "The data to store (any JSON-serializable value: string, number, object, array)",
            },
        },
        "required": ["key", "short_description", "value"],
    }

    def receive(self, message: Any, context: Context) -> str:
        key = _field(message, "key")
        short_description = _field(message, "short_description")
        value = _field(message, "value")

        if not key:
            return KEY_REQUIRED
        if not short_description:
            return "Error: 'short_description' is required"
        if value is None:
            return "Error: 'value' is required"

        root_thread_id, error = self._scope(context)
        if error:
            return error

        context.store.store_env_data(root_thread_id, key, short_description, value, self._actor(context))
        self._publish(context, {"action": "store", "key": key, "short_description": short_description})
        self._notify(context, "store", root_thread_id, key)
        return f"Stored '{key}' in environment data."


class GetEnvData(EnvDataPrimitive):
    name = "get_env_data"
    description = (
        "Retrieve a specific key's full value from the shared environment data. "
        "Use list_env_data first to see what keys are available."
    )
    parameters = {
        "type": "object",
        "properties": {
            "key": {"type": "string", "description": "The key to retrieve"},
        },
        "required": ["key"],
    }

    def receive(self, message: Any, context: Context) -> str:
        key = _field(message, "key")
        if not key:
            return KEY_REQUIRED

        root_thread_id, error = self._scope(context)
        if error:
            return error

        entry = context.store.get_env_data(root_thread_id, key)
        if entry is None:
            return f"Key '{key}' not found in environment data."

        self._publish(context, {"action": "get", "key": key})
        return json.dumps(entry.value, default=str)


class ListEnvData(EnvDataPrimitive):
    name = "list_env_data"
    description = (
        "List all keys and descriptions in the shared environment data for this delegation chain. "
        "Returns keys and short descriptions only (no values). "
        "Use get_env_data to retrieve a specific key's full value."
    )

    def receive(self, message: Any, context: Context) -> str:
        root_thread_id, error = self._scope(context)
        if error:
            return error

        entries = context.store.list_env_data(root_thread_id)
        if not entries:
            return "No environment data stored for this delegation chain."

        self._publish(context, {"action": "list", "count": len(entries)})
        return json.dumps(entries)


class UpdateEnvData(EnvDataPrimitive):
    name = "update_env_data"
    description = (
        "Update an existing key's value and/or description in the shared environment data. "
        "Fails if the key doesn't exist; use store_env_data to create new entries."
    )
    parameters = {
        "type": "object",
        "properties": {
            "key": {"type": "string", "description": "The key to update (must already exist)"},
            "short_description": {
                "type": "string",
                "description": "New description (keeps existing if omitted)",
            },
            "value": {"description": "New value (keeps existing if omitted, null stores null)"},
        },
        "required": ["key"],
    }

    def receive(self, message: Any, context: Context) -> str:
        key = _field(message, "key")
        if not key:
            return KEY_REQUIRED

        root_thread_id, error = self._scope(context)
        if error:
            return error

        updated = context.store.update_env_data(
            root_thread_id,
            key,
            stored_by=self._actor(context),
            short_description=_field(message, "short_description"),
            value=message.get("value", UNSET) if isinstance(message, dict) else UNSET,
        )
        if not updated:
            return f"Key '{key}' not found in environment data. Use store_env_data to create it."

        self._publish(context, {"action": "update", "key": key})
        self._notify(context, "update", root_thread_id, key)
        return f"Updated '{key}' in environment data."


class DeleteEnvData(EnvDataPrimitive):
    name = "delete_env_data"
    description = "Delete a key from the shared environment data for this delegation chain."
    parameters = {
        "type": "object",
        "properties": {
            "key": {"type": "string", "description": "The key to delete"},
        },
        "required": ["key"],
    }

    def receive(self, message: Any, context: Context) -> str:
        key = _field(message, "key")
        if not key:
            return KEY_REQUIRED

        root_thread_id, error = self._scope(context)
        if error:
            return error

        if not context.store.delete_env_data(root_thread_id, key):
            return f"Key '{key}' not found in environment data."

        self._publish(context, {"action": "delete", "key": key})
        self._notify(context, "delete", root_thread_id, key)
        return f"Deleted '{key}' from environment data."
