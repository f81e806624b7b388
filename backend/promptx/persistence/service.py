"""
PromptX Thread Store

Durable storage for threads (row per thread), their messages (row per
message), root-scoped shared env data, and message bus events.
"""

import json
import threading
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, desc, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import Base, ThreadModel, MessageModel, EnvDataModel, BusEventModel
from ..errors import ThreadNotFoundError
from ..runtime.types import (
    BusEntry,
    EnvDataEntry,
    Message,
    MessageRole,
    Thread,
    ThreadType,
    ToolCall,
    ToolResult,
    utcnow,
)
from ...utils.logger import get_logger

logger = get_logger(__name__)

# Default for an omitted update_env_data value; None is stored as JSON null
UNSET: Any = object()


class ThreadStore:
    """
    Persistent thread/session store.

    Features:
    - SQLAlchemy ORM, one short-lived session per operation
    - Thread lineage (parent must exist at creation, so chains are acyclic)
    - Cached root-thread resolution
    - Env data keyed by (root_thread_id, key)
    """

    def __init__(self, database_url: str, echo: bool = False):
        """
        Initialize the thread store.

        Args:
            database_url: SQLAlchemy database URL
            echo: Log emitted SQL
        """
        self.database_url = database_url

        engine_kwargs: Dict[str, Any] = {"echo": echo}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
                # One shared connection, otherwise each session sees an empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

        self._root_cache: Dict[str, str] = {}
        self._cache_lock = threading.Lock()

        Base.metadata.create_all(bind=self.engine)
        logger.info("ThreadStore initialized", database_url=database_url)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    # ============================================
    # Thread Operations
    # ============================================

    def create_thread(
        self,
        owner: str,
        name: Optional[str] = None,
        parent_thread_id: Optional[str] = None,
        parent_entity_name: Optional[str] = None,
        parent_message_id: Optional[int] = None,
        thread_type: Optional[ThreadType] = None,
    ) -> str:
        """
        Create a thread owned by an entity.

        Args:
            owner: Name of the owning entity
            name: Optional display name
            parent_thread_id: Thread this one was delegated from
            parent_entity_name: Entity that delegated
            parent_message_id: Message in the parent thread that triggered delegation
            thread_type: Defaults to DELEGATION when a parent is given, else ROOT

        Returns:
            New thread ID

        Raises:
            ThreadNotFoundError: If the parent thread does not exist
        """
        if thread_type is None:
            thread_type = ThreadType.DELEGATION if parent_thread_id else ThreadType.ROOT

        thread_id = str(uuid.uuid4())
        now = utcnow()

        db = self.get_session()
        try:
            if parent_thread_id is not None and db.get(ThreadModel, parent_thread_id) is None:
                raise ThreadNotFoundError(parent_thread_id)

            db.add(
                ThreadModel(
                    id=thread_id,
                    owner=owner,
                    name=name,
                    thread_type=thread_type,
                    parent_thread_id=parent_thread_id,
                    parent_entity_name=parent_entity_name,
                    parent_message_id=parent_message_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            db.commit()
            logger.debug(
                "Created thread",
                thread_id=thread_id,
                owner=owner,
                thread_type=thread_type.value,
                parent_thread_id=parent_thread_id,
            )
            return thread_id
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to create thread", owner=owner, error=str(e))
            raise
        finally:
            db.close()

    def get_thread(self, thread_id: str) -> Optional[Thread]:
        """
        Get thread by ID.

        Returns:
            Thread or None if not found
        """
        db = self.get_session()
        try:
            model = db.get(ThreadModel, thread_id)
            if not model:
                return None
            return self._thread_model_to_domain(model, self._count_messages(db, [model.id]))
        finally:
            db.close()

    def get_or_create_thread(self, owner: str) -> Thread:
        """Return the owner's most recently updated root thread, creating one if none exist."""
        threads = self.list_threads(owner=owner, thread_type=ThreadType.ROOT, limit=1)
        if threads:
            return threads[0]
        return self.get_thread(self.create_thread(owner=owner))

    def list_threads(
        self,
        owner: Optional[str] = None,
        thread_type: Optional[ThreadType] = None,
        limit: Optional[int] = None,
    ) -> List[Thread]:
        """
        List threads, most recently updated first.

        Args:
            owner: Optional owning entity filter
            thread_type: Optional type filter
            limit: Optional maximum number of threads
        """
        db = self.get_session()
        try:
            query = db.query(ThreadModel)
            if owner:
                query = query.filter_by(owner=owner)
            if thread_type:
                query = query.filter_by(thread_type=thread_type)
            query = query.order_by(desc(ThreadModel.updated_at), desc(ThreadModel.created_at))
            if limit:
                query = query.limit(limit)
            models = query.all()

            counts = self._count_messages(db, [m.id for m in models])
            return [self._thread_model_to_domain(m, counts) for m in models]
        finally:
            db.close()

    def update_thread(self, thread_id: str, name: Optional[str] = None) -> bool:
        """
        Rename a thread and bump its updated_at.

        Returns:
            True if the thread exists
        """
        db = self.get_session()
        try:
            model = db.get(ThreadModel, thread_id)
            if not model:
                return False
            if name is not None:
                model.name = name
            model.updated_at = utcnow()
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to update thread", thread_id=thread_id, error=str(e))
            raise
        finally:
            db.close()

    def delete_thread(self, thread_id: str) -> bool:
        """
        Delete a thread together with its messages, descendants and env data.

        Returns:
            True if the thread existed
        """
        db = self.get_session()
        try:
            model = db.get(ThreadModel, thread_id)
            if not model:
                return False

            doomed = [model]
            frontier = [thread_id]
            while frontier:
                children = db.query(ThreadModel).filter(ThreadModel.parent_thread_id.in_(frontier)).all()
                doomed.extend(children)
                frontier = [c.id for c in children]

            doomed_ids = [m.id for m in doomed]
            db.query(EnvDataModel).filter(EnvDataModel.root_thread_id.in_(doomed_ids)).delete(
                synchronize_session=False
            )
            # Children first so parent foreign keys stay valid until the end
            for m in reversed(doomed):
                db.delete(m)
                db.flush()
            db.commit()

            with self._cache_lock:
                for doomed_id in doomed_ids:
                    self._root_cache.pop(doomed_id, None)

            logger.debug("Deleted thread", thread_id=thread_id, removed=len(doomed_ids))
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to delete thread", thread_id=thread_id, error=str(e))
            raise
        finally:
            db.close()

    # ============================================
    # Message Operations
    # ============================================

    def add_message(self, thread_id: str, message: Message) -> int:
        """
        Append a message to a thread and bump the thread's updated_at.

        Returns:
            Message ID (monotonic within the store)
        """
        db = self.get_session()
        try:
            thread = db.get(ThreadModel, thread_id)
            if thread is None:
                raise ThreadNotFoundError(thread_id)

            now = utcnow()
            model = MessageModel(
                thread_id=thread_id,
                role=message.role,
                content=message.content,
                sender=message.sender,
                tool_calls=[tc.to_dict() for tc in message.tool_calls] if message.tool_calls else None,
                tool_results=[r.to_dict() for r in message.results] if message.results is not None else None,
                usage=message.usage,
                created_at=now,
            )
            db.add(model)
            thread.updated_at = now
            db.commit()
            logger.debug("Saved message", thread_id=thread_id, role=message.role.value, message_id=model.id)
            return model.id
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to save message", thread_id=thread_id, error=str(e))
            raise
        finally:
            db.close()

    def get_messages(self, thread_id: str) -> List[Message]:
        """
        Get all messages of a thread in insertion order.

        Tool calls come back as ToolCall objects, the same shape used at runtime.
        """
        db = self.get_session()
        try:
            models = (
                db.query(MessageModel)
                .filter_by(thread_id=thread_id)
                .order_by(MessageModel.id)
                .all()
            )
            return [self._message_model_to_domain(m) for m in models]
        finally:
            db.close()

    def get_last_message_id(self, thread_id: str) -> Optional[int]:
        db = self.get_session()
        try:
            return (
                db.query(func.max(MessageModel.id))
                .filter(MessageModel.thread_id == thread_id)
                .scalar()
            )
        finally:
            db.close()

    def message_count(self, thread_id: str) -> int:
        db = self.get_session()
        try:
            return db.query(MessageModel).filter_by(thread_id=thread_id).count()
        finally:
            db.close()

    def clear_messages(self, thread_id: str) -> None:
        """Remove all messages from a thread but keep the thread."""
        db = self.get_session()
        try:
            db.query(MessageModel).filter_by(thread_id=thread_id).delete(synchronize_session=False)
            db.query(ThreadModel).filter_by(id=thread_id).update({"updated_at": utcnow()})
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to clear messages", thread_id=thread_id, error=str(e))
            raise
        finally:
            db.close()

    # ============================================
    # Lineage
    # ============================================

    def resolve_root_thread(self, thread_id: str) -> Optional[str]:
        """
        Follow parent_thread_id links up to the thread that has no parent.

        Parents are fixed at creation, so results are cached per thread id.

        Returns:
            Root thread ID, or None if the thread does not exist
        """
        with self._cache_lock:
            cached = self._root_cache.get(thread_id)
        if cached:
            return cached

        lineage = self.get_thread_lineage(thread_id)
        if not lineage:
            return None

        root_id = lineage[0].id
        with self._cache_lock:
            for thread in lineage:
                self._root_cache[thread.id] = root_id
        return root_id

    def get_thread_lineage(self, thread_id: str) -> List[Thread]:
        """
        Get the ancestor chain of a thread, root first and the thread itself last.
        """
        db = self.get_session()
        try:
            chain: List[ThreadModel] = []
            seen = set()
            current = db.get(ThreadModel, thread_id)
            while current is not None and current.id not in seen:
                seen.add(current.id)
                chain.append(current)
                if current.parent_thread_id is None:
                    break
                current = db.get(ThreadModel, current.parent_thread_id)

            chain.reverse()
            return [self._thread_model_to_domain(m) for m in chain]
        finally:
            db.close()

    # ============================================
    # Env Data Operations
    # ============================================

    def store_env_data(
        self,
        root_thread_id: str,
        key: str,
        short_description: str,
        value: Any,
        stored_by: str,
    ) -> None:
        """Create or overwrite an env data entry."""
        db = self.get_session()
        try:
            now = utcnow()
            model = db.get(EnvDataModel, (root_thread_id, key))
            if model is None:
                model = EnvDataModel(root_thread_id=root_thread_id, key=key, created_at=now)
                db.add(model)
            model.short_description = short_description
            model.value = value
            model.stored_by = stored_by
            model.updated_at = now
            db.commit()
            logger.debug("Stored env data", root_thread_id=root_thread_id, key=key, stored_by=stored_by)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to store env data", key=key, error=str(e))
            raise
        finally:
            db.close()

    def get_env_data(self, root_thread_id: str, key: str) -> Optional[EnvDataEntry]:
        """
        Get one env data entry (with its value).

        Returns:
            EnvDataEntry or None if the key is not set under this root
        """
        db = self.get_session()
        try:
            model = db.get(EnvDataModel, (root_thread_id, key))
            if model is None:
                return None
            return self._env_data_model_to_domain(model)
        finally:
            db.close()

    def list_env_data(self, root_thread_id: str) -> List[Dict[str, Any]]:
        """
        List env data under a root thread, sorted by key.

        Values are omitted so enumeration stays cheap.
        """
        db = self.get_session()
        try:
            rows = (
                db.query(
                    EnvDataModel.key,
                    EnvDataModel.short_description,
                    EnvDataModel.stored_by,
                    EnvDataModel.updated_at,
                )
                .filter_by(root_thread_id=root_thread_id)
                .order_by(EnvDataModel.key)
                .all()
            )
            return [
                {
                    "key": row.key,
                    "short_description": row.short_description,
                    "stored_by": row.stored_by,
                    "updated_at": row.updated_at.isoformat() if row.updated_at else None,
                }
                for row in rows
            ]
        finally:
            db.close()

    def update_env_data(
        self,
        root_thread_id: str,
        key: str,
        stored_by: str,
        short_description: Optional[str] = None,
        value: Any = UNSET,
    ) -> bool:
        """
        Update an existing entry; omitted fields keep their current values.

        Returns:
            False if the key does not exist
        """
        db = self.get_session()
        try:
            model = db.get(EnvDataModel, (root_thread_id, key))
            if model is None:
                return False
            if short_description is not None:
                model.short_description = short_description
            if value is not UNSET:
                model.value = value
            model.stored_by = stored_by
            model.updated_at = utcnow()
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to update env data", key=key, error=str(e))
            raise
        finally:
            db.close()

    def delete_env_data(self, root_thread_id: str, key: str) -> bool:
        """
        Returns:
            False if the key does not exist
        """
        db = self.get_session()
        try:
            deleted = (
                db.query(EnvDataModel)
                .filter_by(root_thread_id=root_thread_id, key=key)
                .delete(synchronize_session=False)
            )
            db.commit()
            return deleted > 0
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to delete env data", key=key, error=str(e))
            raise
        finally:
            db.close()

    # ============================================
    # Bus Event Operations
    # ============================================

    def add_event(self, entry: BusEntry) -> int:
        """Persist a message bus entry."""
        db = self.get_session()
        try:
            model = BusEventModel(
                thread_id=entry.thread_id,
                timestamp=entry.timestamp,
                sender=entry.sender,
                recipient=entry.recipient,
                message=_json_safe(entry.message),
                summary=entry.summary,
            )
            db.add(model)
            db.commit()
            return model.id
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def get_events(self, thread_id: Optional[str] = None, limit: Optional[int] = None) -> List[BusEntry]:
        """Persisted bus entries in chronological order, optionally for one thread."""
        db = self.get_session()
        try:
            query = db.query(BusEventModel)
            if thread_id:
                query = query.filter_by(thread_id=thread_id)
            query = query.order_by(BusEventModel.id)
            if limit:
                query = query.limit(limit)
            return [self._event_model_to_domain(m) for m in query.all()]
        finally:
            db.close()

    def get_recent_events(self, count: int = 50) -> List[BusEntry]:
        """Last ``count`` persisted entries, oldest first."""
        db = self.get_session()
        try:
            models = db.query(BusEventModel).order_by(desc(BusEventModel.id)).limit(count).all()
            return [self._event_model_to_domain(m) for m in reversed(models)]
        finally:
            db.close()

    # ============================================
    # Stats
    # ============================================

    def total_events(self) -> int:
        db = self.get_session()
        try:
            return db.query(BusEventModel).count()
        finally:
            db.close()

    def total_threads(self) -> int:
        db = self.get_session()
        try:
            return db.query(ThreadModel).count()
        finally:
            db.close()

    def total_messages(self) -> int:
        db = self.get_session()
        try:
            return db.query(MessageModel).count()
        finally:
            db.close()

    # ============================================
    # Helper Methods
    # ============================================

    def _count_messages(self, db: Session, thread_ids: List[str]) -> Dict[str, int]:
        if not thread_ids:
            return {}
        rows = (
            db.query(MessageModel.thread_id, func.count(MessageModel.id))
            .filter(MessageModel.thread_id.in_(thread_ids))
            .group_by(MessageModel.thread_id)
            .all()
        )
        return dict(rows)

    def _thread_model_to_domain(self, model: ThreadModel, counts: Optional[Dict[str, int]] = None) -> Thread:
        return Thread(
            id=model.id,
            owner=model.owner,
            name=model.name,
            thread_type=model.thread_type,
            parent_thread_id=model.parent_thread_id,
            parent_entity_name=model.parent_entity_name,
            parent_message_id=model.parent_message_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
            message_count=(counts or {}).get(model.id, 0),
        )

    def _message_model_to_domain(self, model: MessageModel) -> Message:
        tool_calls = None
        if model.tool_calls:
            tool_calls = [ToolCall.from_dict(tc) for tc in model.tool_calls]

        results = None
        if model.role == MessageRole.TOOL:
            results = [ToolResult.from_dict(r) for r in model.tool_results or []]

        return Message(
            role=model.role,
            content=model.content,
            sender=model.sender,
            tool_calls=tool_calls,
            results=results,
            usage=model.usage,
            message_id=model.id,
        )

    def _env_data_model_to_domain(self, model: EnvDataModel) -> EnvDataEntry:
        return EnvDataEntry(
            root_thread_id=model.root_thread_id,
            key=model.key,
            short_description=model.short_description,
            value=model.value,
            stored_by=model.stored_by,
            updated_at=model.updated_at,
        )

    def _event_model_to_domain(self, model: BusEventModel) -> BusEntry:
        return BusEntry(
            timestamp=model.timestamp,
            sender=model.sender,
            recipient=model.recipient,
            message=model.message,
            summary=model.summary,
            thread_id=model.thread_id,
        )

    def close(self) -> None:
        """Close the database engine."""
        self.engine.dispose()
        logger.info("ThreadStore closed")


def _json_safe(value: Any) -> Any:
    """Coerce arbitrary bus payloads into JSON-compatible data."""
    return json.loads(json.dumps(value, default=str))
