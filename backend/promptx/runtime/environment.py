"""
PromptX Runtime

Owns the registry, message bus, human queue, thread store and chat
collaborator; loads definitions and is the boundary where entity
failures are caught, reported and reset.
"""

import os
import threading
from typing import Any, Callable, Dict, List, Optional

from .chat import AnthropicChat, Chat
from .context import Context
from .entity import Entity
from .human_queue import HumanQueue
from .loader import (
    LoadReport,
    entity_definition_path,
    load_entity_definition,
    load_entity_definitions,
    load_primitive_definitions,
)
from .message_bus import MessageBus
from .registry import Registry
from .types import CapabilityKind, CapabilityState
from ..config import RuntimeConfig
from ..errors import CapabilityExistsError, DefinitionLoadError
from ..persistence import ThreadStore
from ..primitives import BUILTIN_PRIMITIVES
from ..universal import UNIVERSAL_CAPABILITIES, UNIVERSAL_PRIMITIVES
from ...utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

Observer = Callable[[str, Dict[str, Any]], None]

ENTITY_MODIFIED = "entity_modified"


class Runtime:
    """
    Runtime environment for entities and primitives.

    Features:
    - Built-in and universal capabilities registered on startup
    - Fault-isolated loading of entity and primitive definitions
    - Observer notifications (delegation, env data, entity changes)
    - ``send_message`` boundary with error reporting and state reset
    """

    def __init__(
        self,
        config: Optional[RuntimeConfig] = None,
        chat: Optional[Chat] = None,
        store: Optional[ThreadStore] = None,
    ):
        """
        Initialize runtime.

        Args:
            config: Runtime configuration (defaults apply when omitted)
            chat: Chat collaborator; an AnthropicChat is created on first use otherwise
            store: Thread store; created from ``config.database_url`` when omitted
        """
        self.config = config or RuntimeConfig()
        self.config.validate()

        if store is None and self.config.database_url:
            store = ThreadStore(self.config.database_url)
        self.store = store

        self.registry = Registry()
        self.bus = MessageBus(
            store=self.store,
            summary_length=self.config.bus_summary_length,
            persist_events=self.config.enable_event_logging,
        )
        self.human_queue = HumanQueue()

        self._chat = chat
        self._observers: Dict[int, Observer] = {}
        self._next_observer = 1
        self._observer_lock = threading.Lock()

        self._register_builtins()
        logger.info(
            "Runtime initialized",
            store=bool(self.store),
            capabilities=len(self.registry),
        )

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, chat: Optional[Chat] = None) -> "Runtime":
        """Build a runtime from environment variables, loading configured definitions."""
        config = RuntimeConfig.from_env(env_file)
        configure_logging(log_level=config.log_level, log_dir=config.log_dir, force=True)

        runtime = cls(config=config, chat=chat)
        if runtime.config.primitives_dir:
            runtime.load_primitives()
        if runtime.config.objects_dir:
            runtime.load_entities()
        return runtime

    # ============================================
    # Collaborators
    # ============================================

    @property
    def chat(self) -> Chat:
        if self._chat is None:
            self._chat = AnthropicChat(self.config)
        return self._chat

    @property
    def universal_capabilities(self) -> List[str]:
        return list(UNIVERSAL_CAPABILITIES)

    def context(self, queue_mode: bool = False, calling_entity: Optional[str] = None) -> Context:
        return Context(runtime=self, calling_entity=calling_entity, queue_mode=queue_mode)

    def get(self, name: str):
        return self.registry.get(name)

    def entity(self, name: str) -> Optional[Entity]:
        cap = self.registry.get(name)
        return cap if isinstance(cap, Entity) else None

    # ============================================
    # Loading
    # ============================================

    def load_entity(self, path: str, chat: Optional[Chat] = None, replace: bool = False) -> Entity:
        """
        Load one entity definition and register it.

        Raises:
            DefinitionLoadError: If the definition is malformed
            CapabilityExistsError: If the name is taken and ``replace`` is False
        """
        definition = load_entity_definition(path)
        return self.register_entity(definition.config, definition.body, path=path, chat=chat, replace=replace)

    def register_entity(
        self,
        config: Dict[str, Any],
        body: str,
        path: Optional[str] = None,
        chat: Optional[Chat] = None,
        replace: bool = False,
    ) -> Entity:
        entity = Entity(config=config, body=body, runtime=self, chat=chat, path=path)
        self.registry.register(entity, replace=replace)
        logger.info("Entity loaded", entity=entity.name, capabilities=len(entity.declared_capabilities))
        return entity

    def load_entities(self, directory: Optional[str] = None) -> LoadReport:
        """Load every entity definition in a directory; failures go into the report."""
        directory = directory or self.config.objects_dir
        report = LoadReport()
        if not directory or not os.path.isdir(directory):
            logger.warning("Entity directory not found", directory=directory)
            return report

        definitions, failures = load_entity_definitions(directory)
        report.failed.extend(failures)

        for definition in definitions:
            try:
                self.register_entity(definition.config, definition.body, path=definition.path)
            except CapabilityExistsError as e:
                logger.warning("Skipping entity definition", path=definition.path, reason=str(e))
                report.failed.append(DefinitionLoadError(definition.path, str(e)))
            else:
                report.loaded.append(definition.name)

        logger.info("Entities loaded", loaded=len(report.loaded), failed=len(report.failed))
        return report

    def load_primitives(self, directory: Optional[str] = None) -> LoadReport:
        """Load every primitive definition in a directory; failures go into the report."""
        directory = directory or self.config.primitives_dir
        report = LoadReport()
        if not directory or not os.path.isdir(directory):
            logger.warning("Primitive directory not found", directory=directory)
            return report

        primitives, failures = load_primitive_definitions(directory)
        report.failed.extend(failures)

        for primitive in primitives:
            try:
                self.registry.register(primitive)
            except CapabilityExistsError as e:
                path = getattr(type(primitive), "__module__", primitive.name)
                logger.warning("Skipping primitive", name=primitive.name, reason=str(e))
                report.failed.append(DefinitionLoadError(path, str(e)))
            else:
                report.loaded.append(primitive.name)

        logger.info("Primitives loaded", loaded=len(report.loaded), failed=len(report.failed))
        return report

    def create_entity(self, config: Dict[str, Any], body: str) -> Entity:
        """
        Create and register a new entity, writing its definition file when an
        objects directory is configured.
        """
        path = None
        if self.config.objects_dir:
            os.makedirs(self.config.objects_dir, exist_ok=True)
            path = entity_definition_path(self.config.objects_dir, config["name"])

        entity = self.register_entity(config, body, path=path)
        if path:
            entity.save()

        self.notify(ENTITY_MODIFIED, {"entity": entity.name, "created": True})
        return entity

    def remove_entity(self, name: str) -> bool:
        """Unregister an entity whose definition source went away."""
        cap = self.registry.get(name)
        if cap is None or cap.kind != CapabilityKind.ENTITY:
            return False
        removed = self.registry.unregister(name)
        if removed:
            logger.info("Entity removed", entity=name)
        return removed

    # ============================================
    # Boundary
    # ============================================

    async def send_message(
        self,
        name: str,
        message: Any,
        queue_mode: bool = False,
        context: Optional[Context] = None,
    ) -> str:
        """
        Deliver a human message to an entity and return its response.

        On failure the error is logged and published, the entity is reset to
        idle, and the exception is re-raised.

        Raises:
            ValueError: If no entity has this name
        """
        entity = self.entity(name)
        if entity is None:
            raise ValueError(f"Entity not found: {name}")

        context = context or self.context(queue_mode=queue_mode)
        self.bus.publish("human", name, message, thread_id=entity.current_thread_id)

        try:
            response = await entity.receive(message, context)
        except Exception as e:
            logger.exception("Error processing message", entity=name)
            self.bus.publish(name, "human", f"Error: {e}", thread_id=entity.current_thread_id)
            entity.state = CapabilityState.IDLE
            raise

        self.bus.publish(name, "human", response, thread_id=entity.current_thread_id)
        return response

    # ============================================
    # Observers
    # ============================================

    def add_observer(self, callback: Observer) -> int:
        """
        Observe runtime events. Callback receives ``(event, payload)`` where
        event is one of delegation_started, delegation_completed,
        env_data_changed, entity_modified.
        """
        with self._observer_lock:
            handle = self._next_observer
            self._next_observer += 1
            self._observers[handle] = callback
        return handle

    def remove_observer(self, handle: int) -> bool:
        with self._observer_lock:
            return self._observers.pop(handle, None) is not None

    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        with self._observer_lock:
            observers = list(self._observers.values())
        for callback in observers:
            try:
                callback(event, payload)
            except Exception:
                logger.exception("Error in runtime observer", runtime_event=event)

    # ============================================
    # Lifecycle
    # ============================================

    def _register_builtins(self) -> None:
        for cls in BUILTIN_PRIMITIVES + UNIVERSAL_PRIMITIVES:
            self.registry.register(cls())

    async def close(self) -> None:
        """Close the chat client and the thread store."""
        if self._chat is not None:
            await self._chat.close()
        if self.store is not None:
            self.store.close()
        logger.info("Runtime closed")
