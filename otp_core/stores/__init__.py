"""
OTP Stores
==========
Durable record stores and ephemeral counter stores.
"""

from .base import RecordStore, CounterStore
from .memory import InMemoryRecordStore, InMemoryCounterStore
from .redis_counter import RedisCounterStore, WINDOW_INCR_SCRIPT, create_redis_client
from .database import (
    Base,
    OTPRecordRow,
    create_database_engine,
    create_session_factory,
    create_schema,
    close_engine,
)
from .sql import SQLRecordStore

__all__ = [
    # Interfaces
    "RecordStore",
    "CounterStore",
    # In-memory
    "InMemoryRecordStore",
    "InMemoryCounterStore",
    # Redis
    "RedisCounterStore",
    "WINDOW_INCR_SCRIPT",
    "create_redis_client",
    # SQL
    "Base",
    "OTPRecordRow",
    "SQLRecordStore",
    "create_database_engine",
    "create_session_factory",
    "create_schema",
    "close_engine",
]
