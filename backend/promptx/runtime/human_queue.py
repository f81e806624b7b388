"""
PromptX Human Queue

Pending human-input requests. Each request owns a future that the asking
context waits on; the queue only keeps bookkeeping and notifies subscribers.
"""

import asyncio
import threading
import time
import uuid
from collections import Counter
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .types import utcnow
from ...utils.logger import get_logger

logger = get_logger(__name__)


class QueueEvent(str, Enum):
    """Human queue notification type"""

    ADDED = "added"
    RESOLVED = "resolved"


@dataclass(eq=False)
class HumanRequest:
    """A question from a capability awaiting a human answer"""

    capability: str
    question: str
    options: Optional[List[str]] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self._future: Future = Future()
        self._created_monotonic = time.monotonic()
        self._waiter_lock = threading.Lock()
        self._has_waiter = False

    @property
    def pending(self) -> bool:
        return not self._future.done()

    @property
    def response(self) -> Any:
        """The response, or None while pending."""
        if not self._future.done():
            return None
        return self._future.result()

    @property
    def age(self) -> float:
        """Seconds since creation."""
        return time.monotonic() - self._created_monotonic

    def age_string(self) -> str:
        seconds = int(self.age)
        if seconds < 60:
            return f"{seconds}s"
        if seconds < 3600:
            return f"{seconds // 60}m"
        return f"{seconds // 3600}h"

    def _claim_waiter(self) -> None:
        with self._waiter_lock:
            if self._has_waiter:
                raise RuntimeError(f"Human request {self.id} already has a waiter")
            self._has_waiter = True

    async def wait_for_response(self) -> Any:
        """Suspend the calling task until the request is answered."""
        self._claim_waiter()
        return await asyncio.wrap_future(self._future)

    def wait(self, timeout: Optional[float] = None) -> Any:
        """
        Block the calling thread until the request is answered.

        Raises:
            concurrent.futures.TimeoutError: If ``timeout`` elapses first
        """
        self._claim_waiter()
        return self._future.result(timeout=timeout)

    def _resolve(self, value: Any) -> bool:
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "capability": self.capability,
            "question": self.question,
            "options": self.options,
            "created_at": self.created_at.isoformat(),
            "age": self.age_string(),
        }


QueueSubscriber = Callable[[QueueEvent, HumanRequest], None]


class HumanQueue:
    """
    Thread-safe collection of pending human requests.

    Lock covers add/remove only; subscribers are notified after the lock
    is released, so no one observes a request as pending and resolved at once.
    """

    def __init__(self):
        self._pending: List[HumanRequest] = []
        self._subscribers: Dict[int, QueueSubscriber] = {}
        self._next_handle = 1
        self._lock = threading.Lock()

    def enqueue(self, capability: str, question: str, options: Optional[List[str]] = None) -> HumanRequest:
        """Create a pending request and return it without waiting."""
        request = HumanRequest(capability=capability, question=question, options=options)

        with self._lock:
            self._pending.append(request)

        logger.info("Human request queued", request_id=request.id, capability=capability)
        self._notify(QueueEvent.ADDED, request)
        return request

    def respond(self, request_id: str, value: Any) -> bool:
        """
        Answer a pending request.

        Returns:
            False if the request is unknown or already answered
        """
        with self._lock:
            request = next((r for r in self._pending if r.id == request_id), None)
            if request is None:
                return False
            self._pending.remove(request)

        self._notify(QueueEvent.RESOLVED, request)
        request._resolve(value)
        logger.info("Human request resolved", request_id=request_id, capability=request.capability)
        return True

    def get(self, request_id: str) -> Optional[HumanRequest]:
        with self._lock:
            return next((r for r in self._pending if r.id == request_id), None)

    def pending_for(self, capability_name: str) -> List[HumanRequest]:
        with self._lock:
            return [r for r in self._pending if r.capability == capability_name]

    def pending_counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(Counter(r.capability for r in self._pending))

    def all_pending(self) -> List[HumanRequest]:
        with self._lock:
            return list(self._pending)

    def count(self) -> int:
        with self._lock:
            return len(self._pending)

    def subscribe(self, callback: QueueSubscriber) -> int:
        """Callback receives ``(QueueEvent, request)``. Returns a handle."""
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            self._subscribers[handle] = callback
        return handle

    def unsubscribe(self, handle: int) -> bool:
        with self._lock:
            return self._subscribers.pop(handle, None) is not None

    def _notify(self, event: QueueEvent, request: HumanRequest) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())
        for callback in subscribers:
            try:
                callback(event, request)
            except Exception:
                logger.exception("Error in human queue subscriber", queue_event=event.value, request_id=request.id)
