"""
PromptX Execution Context

Value threaded through every capability call.
"""

from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .environment import Runtime
    from .registry import Registry
    from .message_bus import MessageBus
    from .human_queue import HumanQueue
    from ..persistence import ThreadStore


@dataclass
class Context:
    """
    Execution context for one inbound request.

    ``calling_entity`` is None when the caller is a human. ``queue_mode``
    selects how ask_human reaches the human (queue vs. console prompt).
    """

    runtime: "Runtime"
    calling_entity: Optional[str] = None
    current_capability: Optional[str] = None
    queue_mode: bool = False

    @property
    def registry(self) -> "Registry":
        return self.runtime.registry

    @property
    def bus(self) -> "MessageBus":
        return self.runtime.bus

    @property
    def human_queue(self) -> "HumanQueue":
        return self.runtime.human_queue

    @property
    def store(self) -> Optional["ThreadStore"]:
        return self.runtime.store
