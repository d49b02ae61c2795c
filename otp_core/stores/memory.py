"""
In-Memory Stores
================
Record and counter stores for development and testing.

For development and testing only.
Use SQLRecordStore and RedisCounterStore in production.
"""

import asyncio
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..otp.models import OTPPurpose, OTPRecord, OTPStatus
from ..rate_limit.models import RateWindow
from .base import CounterStore, RecordStore


class InMemoryRecordStore(RecordStore):
    """
    Record store held in a dict.

    Each mutation runs under one ``asyncio.Lock`` so conditional writes are
    atomic across coroutines. Records are copied in and out.
    """

    name = "memory_record_store"

    def __init__(self):
        self._records: Dict[str, OTPRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, otp_id: str) -> Optional[OTPRecord]:
        record = self._records.get(otp_id)
        return replace(record) if record else None

    async def latest_for(self, identity: str, purpose: OTPPurpose) -> Optional[OTPRecord]:
        matches = [
            r for r in self._records.values()
            if r.identity == identity and r.purpose == purpose
        ]
        if not matches:
            return None
        return replace(max(matches, key=lambda r: r.created_at))

    async def insert_superseding(self, record: OTPRecord) -> int:
        async with self._lock:
            superseded = 0
            for existing in self._records.values():
                if (
                    existing.identity == record.identity
                    and existing.purpose == record.purpose
                    and existing.status == OTPStatus.ACTIVE
                ):
                    existing.status = OTPStatus.SUPERSEDED
                    superseded += 1
            self._records[record.id] = replace(record, metadata=dict(record.metadata))
            return superseded

    async def mark_used(self, otp_id: str, now: datetime) -> bool:
        async with self._lock:
            record = self._records.get(otp_id)
            if not self._open(record, now):
                return False
            record.status = OTPStatus.USED
            record.used_at = now
            return True

    async def record_failed_attempt(self, otp_id: str, now: datetime) -> Optional[OTPRecord]:
        async with self._lock:
            record = self._records.get(otp_id)
            if not self._open(record, now):
                return None
            record.attempts += 1
            record.last_attempt_at = now
            if record.attempts >= record.max_attempts:
                record.status = OTPStatus.LOCKED
            return replace(record)

    async def find_expired(self, cutoff: datetime, limit: int) -> List[OTPRecord]:
        expired = sorted(
            (r for r in self._records.values() if r.expires_at < cutoff),
            key=lambda r: r.expires_at,
        )
        return [replace(r) for r in expired[:limit]]

    async def delete(self, otp_id: str) -> bool:
        async with self._lock:
            return self._records.pop(otp_id, None) is not None

    async def count_by_status(self, now: datetime) -> Dict[OTPStatus, int]:
        counts: Dict[OTPStatus, int] = {}
        for record in self._records.values():
            status = record.effective_status(now)
            counts[status] = counts.get(status, 0) + 1
        return counts

    async def ping(self) -> bool:
        return True

    @staticmethod
    def _open(record: Optional[OTPRecord], now: datetime) -> bool:
        return (
            record is not None
            and record.status == OTPStatus.ACTIVE
            and record.expires_at >= now
            and record.attempts < record.max_attempts
        )


class InMemoryCounterStore(CounterStore):
    """
    TTL counters held in a dict.

    Operations do not await, so each one is atomic on the event loop.
    """

    name = "memory_counter_store"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._windows: Dict[str, dict] = {}

    def _live(self, key: str) -> Optional[dict]:
        entry = self._windows.get(key)
        if entry and entry["expires_at"] <= self._clock():
            del self._windows[key]
            return None
        return entry

    def _window(self, key: str, entry: dict) -> RateWindow:
        return RateWindow(
            key=key,
            count=entry["count"],
            window_start=entry["start"],
            ttl_seconds=max(0, int(entry["expires_at"] - self._clock())),
        )

    async def incr(self, key: str, ttl_seconds: int) -> RateWindow:
        entry = self._live(key)
        if entry is None:
            now = self._clock()
            entry = {"count": 0, "start": now, "expires_at": now + ttl_seconds}
            self._windows[key] = entry
        entry["count"] += 1
        return self._window(key, entry)

    async def get(self, key: str) -> Optional[RateWindow]:
        entry = self._live(key)
        return self._window(key, entry) if entry else None

    async def ping(self) -> bool:
        return True
