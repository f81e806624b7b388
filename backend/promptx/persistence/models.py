"""
PromptX SQLAlchemy Models

Database models for threads, messages, shared env data and bus events.
"""

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    JSON,
)
from sqlalchemy.orm import declarative_base, relationship

from ..runtime.types import MessageRole, ThreadType, utcnow

Base = declarative_base()


class ThreadModel(Base):
    """Conversation thread; delegation threads point at their parent"""

    __tablename__ = "threads"

    id = Column(String(36), primary_key=True)

    owner = Column(String(255), nullable=False)
    name = Column(String(500))
    thread_type = Column(Enum(ThreadType), nullable=False, default=ThreadType.ROOT)

    # Lineage
    parent_thread_id = Column(String(36), ForeignKey("threads.id"))
    parent_entity_name = Column(String(255))
    parent_message_id = Column(Integer)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    messages = relationship(
        "MessageModel",
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="MessageModel.id",
    )

    __table_args__ = (
        Index("idx_threads_owner_updated", "owner", "updated_at"),
        Index("idx_threads_parent", "parent_thread_id"),
    )

    def __repr__(self):
        return f"<Thread(id={self.id}, owner={self.owner}, type={self.thread_type.value})>"


class MessageModel(Base):
    """One message in a thread; ordering is by autoincrement id"""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(String(36), ForeignKey("threads.id"), nullable=False)

    role = Column(Enum(MessageRole), nullable=False)
    content = Column(Text)
    sender = Column(String(255))

    # JSON arrays of {id, name, arguments} / {tool_call_id, name, content}
    tool_calls = Column(JSON)
    tool_results = Column(JSON)
    usage = Column(JSON)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    thread = relationship("ThreadModel", back_populates="messages")

    __table_args__ = (Index("idx_messages_thread", "thread_id", "id"),)

    def __repr__(self):
        return f"<Message(id={self.id}, role={self.role.value})>"


class EnvDataModel(Base):
    """Shared key/value entry scoped to a root thread"""

    __tablename__ = "env_data"

    root_thread_id = Column(String(36), ForeignKey("threads.id"), primary_key=True)
    key = Column(String(255), primary_key=True)

    short_description = Column(Text, nullable=False)
    value = Column(JSON)
    stored_by = Column(String(255), nullable=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<EnvData(root={self.root_thread_id}, key={self.key})>"


class BusEventModel(Base):
    """Persisted message bus entry"""

    __tablename__ = "bus_events"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Not a foreign key: entries may reference threads of another store
    thread_id = Column(String(36))

    timestamp = Column(DateTime, nullable=False, default=utcnow)
    sender = Column(String(255), nullable=False)
    recipient = Column(String(255), nullable=False)
    message = Column(JSON)
    summary = Column(Text, nullable=False)

    __table_args__ = (
        Index("idx_bus_events_thread", "thread_id"),
        Index("idx_bus_events_timestamp", "timestamp"),
    )

    def __repr__(self):
        return f"<BusEvent(id={self.id}, {self.sender}->{self.recipient})>"
