"""
Persistence Layer

SQLAlchemy models and the thread store: threads, messages, env data and bus events.
"""

from .models import Base, ThreadModel, MessageModel, EnvDataModel, BusEventModel
from .service import ThreadStore, UNSET

__all__ = [
    "Base",
    "ThreadModel",
    "MessageModel",
    "EnvDataModel",
    "BusEventModel",
    "ThreadStore",
    "UNSET",
]
