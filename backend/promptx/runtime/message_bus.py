"""
PromptX Message Bus

In-memory publish/subscribe log of all inter-capability traffic, optionally
persisted to the thread store.
"""

import json
import re
import threading
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from .types import BusEntry, utcnow
from ...utils.logger import get_logger

if TYPE_CHECKING:
    from ..persistence import ThreadStore

logger = get_logger(__name__)

Subscriber = Callable[[BusEntry], None]

_WHITESPACE = re.compile(r"\s+")


def summarize(message: Any, max_length: int = 200) -> str:
    """
    Single-line, length-bounded projection of a message for compact displays.
    """
    if isinstance(message, str):
        text = message
    else:
        try:
            text = json.dumps(message, separators=(",", ":"), ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            text = str(message)

    text = _WHITESPACE.sub(" ", text).strip()
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


class MessageBus:
    """
    Bus for publishing and observing capability messages.

    Features:
    - Append-only log; entries keep the full message, ``summary`` is the compact form
    - Synchronous subscriber notification in append order
    - Best-effort persistence (failures are logged, never raised)
    """

    def __init__(
        self,
        store: Optional["ThreadStore"] = None,
        summary_length: int = 200,
        persist_events: bool = True,
    ):
        """
        Initialize message bus.

        Args:
            store: Optional thread store for event persistence
            summary_length: Maximum summary length before truncation
            persist_events: Write entries to the store when one is attached
        """
        self.store = store
        self.summary_length = summary_length
        self.persist_events = persist_events

        self._log: List[BusEntry] = []
        self._subscribers: Dict[int, Subscriber] = {}
        self._next_handle = 1
        # Re-entrant: a subscriber may publish
        self._lock = threading.RLock()

    def publish(
        self,
        sender: str,
        recipient: str,
        message: Any,
        thread_id: Optional[str] = None,
    ) -> BusEntry:
        """
        Publish a message.

        Args:
            sender: Source capability name (or "human")
            recipient: Destination capability name
            message: Full message content (string or structured)
            thread_id: Optional thread the message belongs to

        Returns:
            The appended BusEntry
        """
        entry = BusEntry(
            timestamp=utcnow(),
            sender=sender,
            recipient=recipient,
            message=message,
            summary=summarize(message, self.summary_length),
            thread_id=thread_id,
        )

        with self._lock:
            self._log.append(entry)
            self._persist(entry)
            self._notify(entry)

        return entry

    def subscribe(self, callback: Subscriber) -> int:
        """
        Subscribe to new entries.

        Returns:
            Handle for ``unsubscribe``
        """
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            self._subscribers[handle] = callback
        return handle

    def unsubscribe(self, handle: int) -> bool:
        with self._lock:
            return self._subscribers.pop(handle, None) is not None

    def recent(self, count: int = 20) -> List[BusEntry]:
        """Last ``count`` entries, oldest first."""
        if count <= 0:
            return []
        with self._lock:
            return self._log[-count:]

    @property
    def log(self) -> List[BusEntry]:
        with self._lock:
            return list(self._log)

    def clear(self) -> None:
        with self._lock:
            self._log = []

    def format_log(self, count: int = 20) -> str:
        """Format recent entries as ``HH:MM:SS  from → to: summary`` lines."""
        return "\n".join(
            f"{entry.timestamp.strftime('%H:%M:%S')}  {entry.sender} → {entry.recipient}: {entry.summary}"
            for entry in self.recent(count)
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._log)

    def _notify(self, entry: BusEntry) -> None:
        for handle, callback in list(self._subscribers.items()):
            try:
                callback(entry)
            except Exception:
                logger.exception("Error in bus subscriber", handle=handle)

    def _persist(self, entry: BusEntry) -> None:
        if self.store is None or not self.persist_events:
            return
        try:
            self.store.add_event(entry)
        except (SQLAlchemyError, TypeError, ValueError) as e:
            logger.warning(
                "Failed to persist bus event",
                sender=entry.sender,
                recipient=entry.recipient,
                error=str(e),
            )
