"""
PromptX Capability Registry

Process-wide name -> capability lookup for primitives and entities.
"""

import threading
from typing import Dict, Iterable, List, Optional

from .capability import Capability
from .types import CapabilityKind
from ..errors import CapabilityExistsError
from ...utils.logger import get_logger

logger = get_logger(__name__)


class Registry:
    """
    Registry of every capability known to the runtime.

    Mutation is guarded by a lock; reads return snapshots.
    """

    def __init__(self):
        self._capabilities: Dict[str, Capability] = {}
        self._lock = threading.Lock()

    def register(self, capability: Capability, replace: bool = False) -> Capability:
        """
        Register a capability under its name.

        Args:
            capability: Capability instance
            replace: Overwrite an existing registration instead of failing

        Raises:
            CapabilityExistsError: If the name is taken and ``replace`` is False
        """
        name = capability.name
        if not name:
            raise ValueError("capability must have a name")

        with self._lock:
            if name in self._capabilities and not replace:
                raise CapabilityExistsError(name)
            self._capabilities[name] = capability

        logger.debug("Registered capability", name=name, kind=capability.kind.value)
        return capability

    def unregister(self, name: str) -> bool:
        with self._lock:
            removed = self._capabilities.pop(name, None)
        if removed is not None:
            logger.debug("Unregistered capability", name=name)
        return removed is not None

    def get(self, name: str) -> Optional[Capability]:
        with self._lock:
            return self._capabilities.get(name)

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._capabilities

    def list(self, kind: Optional[CapabilityKind] = None) -> List[Capability]:
        """Capabilities in registration order, optionally filtered by kind."""
        with self._lock:
            capabilities = list(self._capabilities.values())
        if kind is None:
            return capabilities
        return [cap for cap in capabilities if cap.kind == CapabilityKind(kind)]

    def all(self) -> List[Capability]:
        return self.list()

    def names(self) -> List[str]:
        with self._lock:
            return list(self._capabilities)

    def primitives(self) -> List[Capability]:
        return self.list(CapabilityKind.PRIMITIVE)

    def entities(self) -> List[Capability]:
        return self.list(CapabilityKind.ENTITY)

    def is_entity(self, name: str) -> bool:
        cap = self.get(name)
        return cap is not None and cap.kind == CapabilityKind.ENTITY

    def descriptors_for(self, names: Iterable[str]) -> List[Dict]:
        """Descriptors for the given names; unregistered names are skipped."""
        descriptors = []
        for name in names:
            cap = self.get(name)
            if cap is not None:
                descriptors.append(cap.descriptor())
        return descriptors

    def __contains__(self, name: str) -> bool:
        return self.exists(name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._capabilities)
