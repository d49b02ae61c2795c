"""
Test doubles shared across the suite.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from otp_core.errors import StoreError
from otp_core.stores.memory import InMemoryCounterStore, InMemoryRecordStore

PHONE = "+15551234567"
EMAIL = "jane@example.com"
WRONG_CODE = "000000"  # six-digit codes never start with 0


class FakeClock:
    """Manually advanced clock serving both datetime and epoch readers."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class DownCounterStore(InMemoryCounterStore):
    """Counter store whose backend is unreachable."""

    async def incr(self, key, ttl_seconds):
        raise StoreError("connection refused", store=self.name)

    async def get(self, key):
        raise StoreError("connection refused", store=self.name)

    async def ping(self):
        raise StoreError("connection refused", store=self.name)


class DownRecordStore(InMemoryRecordStore):
    """Record store whose every call fails."""

    async def get(self, otp_id):
        raise StoreError("database is down", store=self.name)

    async def latest_for(self, identity, purpose):
        raise StoreError("database is down", store=self.name)

    async def count_by_status(self, now):
        raise StoreError("database is down", store=self.name)

    async def ping(self):
        raise StoreError("database is down", store=self.name)


class SlowRecordStore(InMemoryRecordStore):
    """Record store that never answers within any sane timeout."""

    async def get(self, otp_id):
        await asyncio.sleep(5)
        return await super().get(otp_id)

    async def latest_for(self, identity, purpose):
        await asyncio.sleep(5)
        return await super().latest_for(identity, purpose)


class YieldingRecordStore(InMemoryRecordStore):
    """Yields to the event loop before each call so coroutines interleave."""

    async def get(self, otp_id):
        await asyncio.sleep(0)
        return await super().get(otp_id)

    async def latest_for(self, identity, purpose):
        await asyncio.sleep(0)
        return await super().latest_for(identity, purpose)

    async def insert_superseding(self, record):
        await asyncio.sleep(0)
        return await super().insert_superseding(record)

    async def mark_used(self, otp_id, now):
        await asyncio.sleep(0)
        return await super().mark_used(otp_id, now)

    async def record_failed_attempt(self, otp_id, now):
        await asyncio.sleep(0)
        return await super().record_failed_attempt(otp_id, now)


class FlakyCounterStore(InMemoryCounterStore):
    """Counter store that reads fine but fails to increment while ``fail_incr`` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.fail_incr = True

    async def incr(self, key, ttl_seconds):
        if self.fail_incr:
            raise StoreError("write failed", store=self.name)
        return await super().incr(key, ttl_seconds)


class FailingInsertRecordStore(InMemoryRecordStore):
    """Record store whose inserts fail while ``fail_insert`` is set."""

    def __init__(self):
        super().__init__()
        self.fail_insert = False

    async def insert_superseding(self, record):
        if self.fail_insert:
            raise StoreError("deadlock detected", store=self.name)
        return await super().insert_superseding(record)


class SlowInsertRecordStore(InMemoryRecordStore):
    """Record store whose inserts hang while ``slow_insert`` is set."""

    def __init__(self):
        super().__init__()
        self.slow_insert = False

    async def insert_superseding(self, record):
        if self.slow_insert:
            await asyncio.sleep(5)
        return await super().insert_superseding(record)
