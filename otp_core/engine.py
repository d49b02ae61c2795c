"""
Verification Engine
===================
Issues, re-issues and validates one-time passcodes against a durable record
store and an ephemeral counter store.

Record state machine::

    active --match--------------> used
    active --ceiling reached----> locked
    active --newer code issued--> superseded
    active --past expires_at----> (reads as) expired

Validation depends only on the record store. Issuance fails closed when the
counter store is unreachable.
"""

import asyncio
import math
import time
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple, TypeVar, Union

import structlog

from .config import OTPConfig
from .errors import (
    OTPErrorCode,
    RateLimitedError,
    ResendCooldownError,
    StoreError,
    TransientError,
)
from .metrics import (
    OTP_DELIVERY_FAILURES,
    OTP_ISSUED,
    OTP_REJECTED,
    OTP_STORE_ERRORS,
    OTP_STORE_LATENCY,
    OTP_VALIDATIONS,
)
from .notifier import Notifier
from .otp.hashing import generate_code, generate_salt, hash_code, verify_code_hash
from .otp.identity import mask_identity, normalize_identity
from .otp.models import (
    TERMINAL_ERRORS,
    AttemptInfo,
    GenerateResult,
    OTPPurpose,
    OTPRecord,
    OTPStats,
    OTPStatus,
    ValidationResult,
    utc_now,
)
from .rate_limit.limiter import OTPRateLimiter
from .rate_limit.models import RateKind
from .stores.base import CounterStore, RecordStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

ISSUE_KINDS: Tuple[RateKind, ...] = (RateKind.OTP_ISSUE,)
RESEND_KINDS: Tuple[RateKind, ...] = (RateKind.OTP_ISSUE, RateKind.OTP_RESEND)


class VerificationEngine:
    """
    OTP issuance and verification.

    Safe under concurrent calls for the same identity/purpose and the same
    record id: every status change is delegated to a single conditional
    write on the record store.
    """

    def __init__(
        self,
        records: RecordStore,
        counters: CounterStore,
        notifier: Notifier,
        config: Optional[OTPConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.records = records
        self.counters = counters
        self.notifier = notifier
        self.config = config or OTPConfig()
        self._clock = clock
        self.limiter = OTPRateLimiter(
            counters,
            limit=self.config.max_otps_per_window,
            window_seconds=self.config.rate_window_seconds,
            clock=lambda: self._clock().timestamp(),
        )
        self._deliveries: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    async def generate(
        self,
        identity: str,
        purpose: Union[OTPPurpose, str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GenerateResult:
        """
        Issue a new code for an identity/purpose.

        Raises:
            RateLimitedError: Issue window is full
            ResendCooldownError: Previous code issued too recently
            TransientError: A store timed out or is unavailable
            ValueError: Identity or purpose is invalid
        """
        purpose = OTPPurpose(purpose)
        identity = normalize_identity(identity)
        return await self._issue(identity, purpose, metadata, ISSUE_KINDS, action="generate")

    async def resend(
        self,
        identity: str,
        purpose: Union[OTPPurpose, str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GenerateResult:
        """
        Re-issue a code for an identity/purpose.

        The previous code need not be active. Counts against both the issue
        and the resend windows; metadata is carried over from the latest
        record when not given.
        """
        purpose = OTPPurpose(purpose)
        identity = normalize_identity(identity)

        latest = await self._records(self.records.latest_for(identity, purpose), "latest_for")
        if metadata is None and latest is not None:
            metadata = latest.metadata

        return await self._issue(identity, purpose, metadata, RESEND_KINDS, action="resend", latest=latest)

    async def _issue(
        self,
        identity: str,
        purpose: OTPPurpose,
        metadata: Optional[Dict[str, Any]],
        kinds: Tuple[RateKind, ...],
        action: str,
        latest: Optional[OTPRecord] = None,
    ) -> GenerateResult:
        log = logger.bind(identity=mask_identity(identity), purpose=purpose.value, action=action)

        for kind in kinds:
            info = await self._counters(self.limiter.peek(identity, purpose, kind), "peek")
            if not info.allowed:
                OTP_REJECTED.labels(purpose=purpose.value, reason="rate_limited").inc()
                log.warning("OTP rate limit exceeded", kind=kind.value, retry_after=info.retry_after)
                raise RateLimitedError(
                    f"Rate limit exceeded for {kind.value}",
                    retry_after=info.retry_after,
                )

        now = self._clock()
        if latest is None:
            latest = await self._records(self.records.latest_for(identity, purpose), "latest_for")
        if latest is not None:
            elapsed = (now - latest.created_at).total_seconds()
            if elapsed < self.config.resend_cooldown_seconds:
                retry_after = math.ceil(self.config.resend_cooldown_seconds - elapsed)
                OTP_REJECTED.labels(purpose=purpose.value, reason="cooldown").inc()
                log.info("OTP resend cooldown active", retry_after=retry_after)
                raise ResendCooldownError(
                    "Please wait before requesting a new code",
                    retry_after=retry_after,
                )

        code = generate_code(self.config.code_length)
        salt = generate_salt()
        record = OTPRecord(
            id=str(uuid.uuid4()),
            identity=identity,
            purpose=purpose,
            code_hash=hash_code(code, salt),
            salt=salt,
            expires_at=now + self.config.expiry,
            created_at=now,
            max_attempts=self.config.max_attempts,
            metadata=dict(metadata or {}),
        )

        # Windows are counted before any durable write
        for kind in kinds:
            await self._counters(self.limiter.hit(identity, purpose, kind), "hit")

        superseded = await self._records(self.records.insert_superseding(record), "insert_superseding")

        self._dispatch(record, code)

        OTP_ISSUED.labels(purpose=purpose.value, action=action).inc()
        log.info(
            "OTP issued",
            otp_id=record.id,
            superseded=superseded,
            expires_in=self.config.expiry_minutes * 60,
        )

        return GenerateResult(
            otp_id=record.id,
            expires_at=record.expires_at,
            attempts_remaining=record.max_attempts,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate(self, otp_id: str, code: str) -> ValidationResult:
        """
        Validate a code against a record.

        Domain outcomes are returned in ``ValidationResult.error``; only a
        store failure raises ``TransientError``.
        """
        now = self._clock()
        record = await self._records(self.records.get(otp_id), "get")
        if record is None:
            return self._reject(otp_id, OTPErrorCode.NOT_FOUND)

        error = self._terminal_error(record, now)
        if error is not None:
            return self._reject(otp_id, error)

        if verify_code_hash(code, record.salt, record.code_hash):
            if await self._records(self.records.mark_used(otp_id, now), "mark_used"):
                OTP_VALIDATIONS.labels(outcome="success").inc()
                logger.info("OTP verified", otp_id=otp_id, purpose=record.purpose.value)
                return ValidationResult(
                    success=True,
                    attempts_remaining=record.attempts_remaining,
                    metadata=record.metadata,
                )
            # Lost the compare-and-set to a concurrent call
            return await self._reject_current(otp_id, now)

        updated = await self._records(self.records.record_failed_attempt(otp_id, now), "record_failed_attempt")
        if updated is None:
            return await self._reject_current(otp_id, now)

        if updated.status == OTPStatus.LOCKED:
            logger.warning("OTP locked after failed attempts", otp_id=otp_id, attempts=updated.attempts)
            return self._reject(otp_id, OTPErrorCode.ATTEMPTS_EXCEEDED)

        OTP_VALIDATIONS.labels(outcome=OTPErrorCode.INVALID_CODE.value).inc()
        logger.info("Invalid OTP attempt", otp_id=otp_id, remaining=updated.attempts_remaining)
        return ValidationResult(
            success=False,
            attempts_remaining=updated.attempts_remaining,
            error=OTPErrorCode.INVALID_CODE,
        )

    def _terminal_error(self, record: OTPRecord, now: datetime) -> Optional[OTPErrorCode]:
        status = record.effective_status(now)
        if status != OTPStatus.ACTIVE:
            return TERMINAL_ERRORS[status]
        if record.attempts >= record.max_attempts:
            return OTPErrorCode.ATTEMPTS_EXCEEDED
        return None

    async def _reject_current(self, otp_id: str, now: datetime) -> ValidationResult:
        current = await self._records(self.records.get(otp_id), "get")
        if current is None:
            return self._reject(otp_id, OTPErrorCode.NOT_FOUND)
        error = self._terminal_error(current, now)
        if error is None:
            raise TransientError("Record changed concurrently, retry validation")
        return self._reject(otp_id, error)

    def _reject(self, otp_id: str, error: OTPErrorCode) -> ValidationResult:
        OTP_VALIDATIONS.labels(outcome=error.value).inc()
        logger.info("OTP rejected", otp_id=otp_id, error=error.value)
        return ValidationResult(success=False, attempts_remaining=0, error=error)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def attempt_info(self, identity: str, purpose: Union[OTPPurpose, str]) -> AttemptInfo:
        """Attempt state of the latest code for an identity/purpose."""
        purpose = OTPPurpose(purpose)
        identity = normalize_identity(identity)
        latest = await self._records(self.records.latest_for(identity, purpose), "latest_for")
        if latest is None:
            return AttemptInfo(
                attempts=0,
                max_attempts=self.config.max_attempts,
                is_blocked=False,
            )

        return AttemptInfo(
            attempts=latest.attempts,
            max_attempts=latest.max_attempts,
            is_blocked=latest.status == OTPStatus.LOCKED,
            status=latest.effective_status(self._clock()),
            last_attempt_at=latest.last_attempt_at or latest.created_at,
            otp_id=latest.id,
        )

    async def stats(self) -> OTPStats:
        """Record counts by effective status."""
        counts = await self._records(self.records.count_by_status(self._clock()), "count_by_status")
        return OTPStats(
            total=sum(counts.values()),
            active=counts.get(OTPStatus.ACTIVE, 0),
            expired=counts.get(OTPStatus.EXPIRED, 0),
            used=counts.get(OTPStatus.USED, 0),
            locked=counts.get(OTPStatus.LOCKED, 0),
            superseded=counts.get(OTPStatus.SUPERSEDED, 0),
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _dispatch(self, record: OTPRecord, code: str) -> None:
        task = asyncio.create_task(self._deliver(record.id, record.identity, record.purpose, code))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, otp_id: str, identity: str, purpose: OTPPurpose, code: str) -> bool:
        try:
            accepted = await self.notifier.send(identity, purpose, code)
        except Exception as e:
            OTP_DELIVERY_FAILURES.labels(purpose=purpose.value).inc()
            logger.error("OTP delivery failed", otp_id=otp_id, error=str(e))
            return False

        if not accepted:
            OTP_DELIVERY_FAILURES.labels(purpose=purpose.value).inc()
            logger.warning("OTP delivery rejected by notifier", otp_id=otp_id)
        return bool(accepted)

    async def drain(self) -> None:
        """Wait for in-flight deliveries. Call before shutdown."""
        if self._deliveries:
            await asyncio.gather(*list(self._deliveries))

    # ------------------------------------------------------------------
    # Store calls
    # ------------------------------------------------------------------

    async def _records(self, call: Awaitable[T], operation: str) -> T:
        return await self._bounded(call, self.records.name, operation)

    async def _counters(self, call: Awaitable[T], operation: str) -> T:
        return await self._bounded(call, self.counters.name, operation)

    async def _bounded(self, call: Awaitable[T], store: str, operation: str) -> T:
        """Run a store call under the configured timeout, mapping failures to TransientError."""
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(call, timeout=self.config.store_timeout)
        except asyncio.TimeoutError:
            OTP_STORE_ERRORS.labels(store=store, operation=operation, error_type="timeout").inc()
            logger.error("Store call timed out", store=store, operation=operation)
            raise TransientError(f"{store} timed out during {operation}")
        except StoreError as e:
            OTP_STORE_ERRORS.labels(store=store, operation=operation, error_type="unavailable").inc()
            logger.error("Store call failed", store=store, operation=operation, error=str(e))
            raise TransientError(f"{store} unavailable during {operation}") from e
        finally:
            OTP_STORE_LATENCY.labels(store=store, operation=operation).observe(time.perf_counter() - start)
