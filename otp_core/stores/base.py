"""
Store Interfaces
================
Capability sets the engine needs from the durable record store and the
ephemeral counter store.

Every status transition on the record store is a single conditional write:
implementations must make ``insert_superseding``, ``mark_used`` and
``record_failed_attempt`` atomic with respect to concurrent callers.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ..otp.models import OTPPurpose, OTPRecord, OTPStatus
from ..rate_limit.models import RateWindow


class RecordStore(ABC):
    """Durable store of OTP records. Sole source of truth for validation."""

    name = "record_store"

    @abstractmethod
    async def get(self, otp_id: str) -> Optional[OTPRecord]:
        """Fetch a record by id."""

    @abstractmethod
    async def latest_for(self, identity: str, purpose: OTPPurpose) -> Optional[OTPRecord]:
        """Fetch the most recently created record for an identity/purpose."""

    @abstractmethod
    async def insert_superseding(self, record: OTPRecord) -> int:
        """
        Supersede any active record for the pair and insert ``record``.

        Both happen in one atomic unit.

        Returns:
            Number of records superseded
        """

    @abstractmethod
    async def mark_used(self, otp_id: str, now: datetime) -> bool:
        """
        Compare-and-set ``active -> used``.

        Only succeeds while the record is active, unexpired and under its
        attempt ceiling.

        Returns:
            True if this call performed the transition
        """

    @abstractmethod
    async def record_failed_attempt(self, otp_id: str, now: datetime) -> Optional[OTPRecord]:
        """
        Increment ``attempts`` and lock the record if the ceiling is reached.

        Increment and lock are one conditional write that only applies while
        the record is active, unexpired and under its ceiling.

        Returns:
            The updated record, or None if the condition did not hold
        """

    @abstractmethod
    async def find_expired(self, cutoff: datetime, limit: int) -> List[OTPRecord]:
        """Records with ``expires_at`` before ``cutoff``, oldest first."""

    @abstractmethod
    async def delete(self, otp_id: str) -> bool:
        """Permanently delete a record. Returns False if it did not exist."""

    @abstractmethod
    async def count_by_status(self, now: datetime) -> Dict[OTPStatus, int]:
        """Record counts keyed by effective status."""

    @abstractmethod
    async def ping(self) -> bool:
        """Lightweight connectivity check."""


class CounterStore(ABC):
    """Ephemeral TTL counters. Loss only weakens rate limiting."""

    name = "counter_store"

    @abstractmethod
    async def incr(self, key: str, ttl_seconds: int) -> RateWindow:
        """
        Atomically increment a counter.

        Creates the window with ``ttl_seconds`` if absent; an existing window
        keeps its expiry.
        """

    @abstractmethod
    async def get(self, key: str) -> Optional[RateWindow]:
        """Read a counter without modifying it."""

    @abstractmethod
    async def ping(self) -> bool:
        """Lightweight connectivity check."""
