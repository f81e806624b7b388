"""
PromptX Entity

A capability backed by a Chat collaborator. Its body is its identity; its
declared capabilities are the tools it may call. ``receive`` runs the
tool-calling conversation loop until the model answers without tool calls.
"""

import asyncio
import inspect
import json
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, Callable, Dict, FrozenSet, List, Optional, TYPE_CHECKING

import yaml
from sqlalchemy.exc import SQLAlchemyError

from .capability import Capability
from .chat import Chat
from .context import Context
from .delegation import delegate
from .types import (
    CapabilityKind,
    CapabilityState,
    Message,
    Thread,
    ToolCall,
    ToolResult,
)
from ..errors import EntityBusyError, ThreadNotFoundError
from ...utils.logger import get_logger

if TYPE_CHECKING:
    from .environment import Runtime

logger = get_logger(__name__)

ENTITY_PARAMETERS = {
    "type": "object",
    "properties": {
        "message": {
            "type": "string",
            "description": "Natural language message to send",
        }
    },
    "required": ["message"],
}

# Entities whose lock the current call chain already holds
_held_entities: ContextVar[FrozenSet[str]] = ContextVar("promptx_held_entities", default=frozenset())

HistoryCallback = Callable[["Entity", Optional[str], List[Message]], None]


def normalize_message(message: Any) -> str:
    """Entities accept a string or a mapping with a ``message`` key."""
    if isinstance(message, str):
        return message
    if isinstance(message, dict):
        text = message.get("message")
        if text is not None:
            return str(text)
        return json.dumps(message, default=str)
    return str(message)


def stringify_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    if result is None:
        return ""
    return json.dumps(result, default=str)


class Entity(Capability):
    """
    Chat-backed capability.

    Features:
    - Tool-calling conversation loop with a capability guard
    - Thread-backed history (persisted per message when a store is attached)
    - Delegation to other entities in isolated child threads
    - Per-entity lock; re-entrant within one delegation chain
    """

    kind = CapabilityKind.ENTITY

    def __init__(
        self,
        config: Dict[str, Any],
        body: str,
        runtime: "Runtime",
        chat: Optional[Chat] = None,
        path: Optional[str] = None,
    ):
        """
        Initialize entity.

        Args:
            config: Parsed definition config (name, description, capabilities, metadata)
            body: Natural-language identity, used as the system prompt
            runtime: Owning runtime (registry, bus, store)
            chat: Chat collaborator; defaults to the runtime's
            path: Definition file, used by ``save``
        """
        self.config = dict(config)
        self.config["capabilities"] = list(self.config.get("capabilities") or [])
        super().__init__(
            name=str(self.config.get("name") or "unnamed"),
            description=str(self.config.get("description") or "An entity"),
            parameters=ENTITY_PARAMETERS,
        )
        self.body = body
        self.runtime = runtime
        self.log = logger.bind(entity=self.name)
        self._chat = chat
        self.path = path

        self.history: List[Message] = []
        self.current_thread_id: Optional[str] = None
        self.on_history_updated: Optional[HistoryCallback] = None

        self._lock = asyncio.Lock()

        if self.store is not None:
            self._load_or_create_thread()

    # ============================================
    # Accessors
    # ============================================

    @property
    def store(self):
        return self.runtime.store

    @property
    def chat(self) -> Chat:
        return self._chat if self._chat is not None else self.runtime.chat

    @chat.setter
    def chat(self, chat: Optional[Chat]) -> None:
        self._chat = chat

    @property
    def declared_capabilities(self) -> List[str]:
        return self.config["capabilities"]

    def allowed_capabilities(self) -> List[str]:
        """Declared plus universal capability names."""
        allowed = list(self.declared_capabilities)
        for name in self.runtime.universal_capabilities:
            if name not in allowed:
                allowed.append(name)
        return allowed

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    @property
    def held_by_current_chain(self) -> bool:
        """True when the running call chain already holds this entity's lock."""
        return self.name in _held_entities.get()

    # ============================================
    # Conversation Loop
    # ============================================

    async def receive(self, message: Any, context: Context) -> str:
        """
        Handle an inbound message and return the final response.

        Chat and tool errors propagate to the caller; the entity is left in
        its current non-idle state for the boundary to reset.
        """
        async with self._exclusive():
            return await self._converse(message, context)

    async def receive_in_thread(self, message: Any, context: Context, thread_id: str) -> str:
        """
        Run ``receive`` in another thread, then restore the active thread,
        history and state whether or not it succeeded.
        """
        async with self._exclusive():
            saved = (self.current_thread_id, self.history, self.state)
            self.current_thread_id = thread_id
            self.history = self._load_history(thread_id)
            try:
                return await self._converse(message, context)
            finally:
                self.current_thread_id, self.history, self.state = saved

    async def _converse(self, message: Any, context: Context) -> str:
        content = normalize_message(message)

        caller = context.calling_entity
        origin = caller if caller and caller != self.name else "human"

        self._append(Message.user(content, sender=origin))
        self.state = CapabilityState.WORKING

        while True:
            response = await self.chat.chat(
                system=self.build_system_prompt(),
                messages=list(self.history),
                tools=self.tool_descriptors(),
            )

            if response.has_tool_calls:
                # No prose alongside tool calls; the next turn answers after results arrive
                self._append(Message.assistant(tool_calls=response.tool_calls, usage=response.usage))
                self.state = CapabilityState.AWAITING_TOOL_RESULTS

                results = await self.execute_tool_calls(response.tool_calls, context)

                self._append(Message.tool(results))
                self.state = CapabilityState.WORKING
                self._notify_history_updated()
                continue

            final = response.content or ""
            self._append(Message.assistant(content=final, usage=response.usage))
            self.state = CapabilityState.IDLE
            self.log.debug("Entity responded", thread_id=self.current_thread_id)
            return final

    async def execute_tool_calls(self, tool_calls: List[Any], context: Context) -> List[ToolResult]:
        """Execute tool calls in order, enforcing the capability guard."""
        bus = self.runtime.bus
        allowed = self.allowed_capabilities()
        results = []

        for raw_call in tool_calls:
            tc = ToolCall.from_dict(raw_call)

            if tc.name not in allowed:
                self.log.warning("Blocked undeclared capability", capability=tc.name)
                results.append(ToolResult(tc.id, tc.name, self._guard_message(tc.name)))
                continue

            capability = self.runtime.registry.get(tc.name)
            if capability is None:
                results.append(ToolResult(tc.id, tc.name, f"Unknown capability: {tc.name}"))
                continue

            bus.publish(self.name, tc.name, tc.arguments, thread_id=self.current_thread_id)

            previous_entity = context.calling_entity
            previous_capability = context.current_capability
            context.calling_entity = self.name
            context.current_capability = tc.name
            try:
                if capability.kind == CapabilityKind.ENTITY:
                    result = await delegate(self, capability, tc, context)
                else:
                    result = capability.receive(tc.arguments, context)
                    if inspect.isawaitable(result):
                        result = await result
            finally:
                context.calling_entity = previous_entity
                context.current_capability = previous_capability

            bus.publish(tc.name, self.name, result, thread_id=self.current_thread_id)
            results.append(ToolResult(tc.id, tc.name, stringify_result(result)))

        return results

    def _guard_message(self, name: str) -> str:
        return (
            f"Capability '{name}' is not available. "
            f"Your declared capabilities are: {', '.join(self.declared_capabilities)}. "
            "Use add_capability to add it first, or use list_capabilities to discover what's available."
        )

    def tool_descriptors(self) -> List[Dict[str, Any]]:
        return self.runtime.registry.descriptors_for(self.allowed_capabilities())

    def build_system_prompt(self) -> str:
        declared = ", ".join(self.declared_capabilities) or "(none)"
        universal = ", ".join(self.runtime.universal_capabilities) or "(none)"

        context_block = f"""## System Context

You are an entity named "{self.name}" running in a PromptX runtime.

### What is an entity?
You are an autonomous participant defined by a markdown file. You have an identity (your prompt),
capabilities (tools you can use), and you communicate by receiving messages and responding.
You exist alongside other entities and primitive tools in a shared runtime.

### How you get called
You may receive messages from:
- **A human** interacting with you directly
- **Another entity** that has delegated a task to you as part of a larger workflow

When called by another entity, the message starts with a delegation context block describing
who called you. Shared environment data stored by other entities in the same workflow can be
listed with `list_env_data`.

### Your capabilities
When using tools that target an entity (like add_capability), you can use "self" or "{self.name}" to target yourself.
- Declared capabilities: {declared}
- Universal capabilities (always available): {universal}

You can create new entities at runtime with `create_capability`. Use `list_capabilities` to see everything available.
You can write deterministic tools with `create_primitive` and refine your own prompt with `modify_prompt`.
"""
        return f"{self.body}\n\n{context_block}"

    # ============================================
    # Threads
    # ============================================

    def list_threads(self) -> List[Thread]:
        if self.store is None:
            return []
        return self.store.list_threads(owner=self.name)

    def new_thread(self, name: Optional[str] = None) -> Optional[str]:
        """
        Create a root thread and make it active.

        Raises:
            EntityBusyError: If a conversation is in progress
        """
        if self.is_busy:
            raise EntityBusyError(self.name)
        if self.store is None:
            return None

        self.current_thread_id = self.store.create_thread(owner=self.name, name=name)
        self.history = []
        self.log.info("New thread", thread_id=self.current_thread_id)
        return self.current_thread_id

    def switch_thread(self, thread_id: str) -> bool:
        """Activate one of this entity's threads; False if busy, unknown or foreign."""
        if self.is_busy or self.store is None:
            return False

        thread = self.store.get_thread(thread_id)
        if thread is None or thread.owner != self.name:
            return False

        self.current_thread_id = thread_id
        self.history = self._load_history(thread_id)
        return True

    def create_delegation_thread(
        self,
        parent_entity: str,
        parent_thread_id: Optional[str],
        parent_message_id: Optional[int] = None,
    ) -> Optional[str]:
        """Create a delegation thread owned by this entity; None without a store."""
        if self.store is None:
            return None
        return self.store.create_thread(
            owner=self.name,
            parent_thread_id=parent_thread_id,
            parent_entity_name=parent_entity,
            parent_message_id=parent_message_id,
        )

    def clear_history(self) -> None:
        self.history = []
        if self.store is not None and self.current_thread_id:
            self.store.clear_messages(self.current_thread_id)

    # ============================================
    # Definition Persistence
    # ============================================

    def save(self) -> bool:
        """Write config and body back to the definition file."""
        if not self.path:
            return False

        front_matter = yaml.safe_dump(self.config, sort_keys=False, allow_unicode=True)
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                f.write(f"---\n{front_matter}---\n\n{self.body.strip()}\n")
        except OSError as e:
            self.log.error("Failed to save entity definition", path=self.path, error=str(e))
            return False
        return True

    # ============================================
    # Serialization
    # ============================================

    def to_summary(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "status": self.state.value,
            "capabilities": self._describe(self.declared_capabilities),
            "thread_count": len(self.list_threads()),
        }

    def to_state(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "status": self.state.value,
            "capabilities": self._describe(self.declared_capabilities),
            "universal_capabilities": self._describe(self.runtime.universal_capabilities),
            "current_thread": {
                "id": self.current_thread_id,
                "messages": [m.to_dict() for m in self.history],
            }
            if self.current_thread_id
            else None,
            "threads": [t.to_dict() for t in self.list_threads()],
            "prompt": self.body,
            "config": self.config,
        }

    def _describe(self, names: List[str]) -> List[Dict[str, Any]]:
        described = []
        for cap_name in names:
            cap = self.runtime.registry.get(cap_name)
            described.append({
                "name": cap_name,
                "description": cap.description if cap else "Capability not found",
                "parameters": cap.parameters if cap else None,
            })
        return described

    # ============================================
    # Helper Methods
    # ============================================

    @asynccontextmanager
    async def _exclusive(self):
        held = _held_entities.get()
        if self.name in held:
            # Same call chain re-entered this entity; the outer frame holds the lock
            yield
            return

        async with self._lock:
            token = _held_entities.set(held | {self.name})
            try:
                yield
            finally:
                _held_entities.reset(token)

    def _load_or_create_thread(self) -> None:
        thread = self.store.get_or_create_thread(self.name)
        self.current_thread_id = thread.id
        self.history = self._load_history(thread.id)

    def _load_history(self, thread_id: Optional[str]) -> List[Message]:
        if self.store is None or not thread_id:
            return []
        return self.store.get_messages(thread_id)

    def _append(self, message: Message) -> None:
        self.history.append(message)
        if self.store is None or not self.current_thread_id:
            return
        try:
            message.message_id = self.store.add_message(self.current_thread_id, message)
        except (SQLAlchemyError, ThreadNotFoundError) as e:
            self.log.warning(
                "Failed to persist message",
                thread_id=self.current_thread_id,
                role=message.role.value,
                error=str(e),
            )

    def last_message_id(self) -> Optional[int]:
        for message in reversed(self.history):
            if message.message_id is not None:
                return message.message_id
        return None

    def _notify_history_updated(self) -> None:
        if self.on_history_updated is None:
            return
        try:
            self.on_history_updated(self, self.current_thread_id, list(self.history))
        except Exception:
            self.log.exception("Error in history callback")
