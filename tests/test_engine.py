"""
Unit Tests for the Verification Engine
======================================
Issuance, validation, supersession, rate limiting and delivery.
"""

import pytest
from datetime import timedelta

from otp_core.config import OTPConfig
from otp_core.engine import VerificationEngine
from otp_core.errors import (
    OTPErrorCode,
    RateLimitedError,
    ResendCooldownError,
    TransientError,
)
from otp_core.notifier import RecordingNotifier
from otp_core.otp import OTPPurpose, OTPStatus

from tests.support import (
    EMAIL,
    PHONE,
    WRONG_CODE,
    DownCounterStore,
    DownRecordStore,
    FailingInsertRecordStore,
    FlakyCounterStore,
    SlowInsertRecordStore,
    SlowRecordStore,
)


async def issue(engine, notifier, identity=PHONE, purpose=OTPPurpose.LOGIN, metadata=None):
    """Generate a code and return (result, plaintext code)."""
    result = await engine.generate(identity, purpose, metadata)
    await engine.drain()
    return result, notifier.last_code(identity)


class TestGenerate:
    """Tests for issuing codes."""

    @pytest.mark.asyncio
    async def test_generate_defaults(self, engine, notifier, records, clock):
        """Should persist an active record and hand the code to the notifier."""
        result, code = await issue(engine, notifier)

        assert result.attempts_remaining == 5
        assert result.expires_at == clock.now() + timedelta(minutes=10)
        assert len(code) == 6 and code.isdigit()

        record = await records.get(result.otp_id)
        assert record.status == OTPStatus.ACTIVE
        assert record.attempts == 0
        assert record.identity == PHONE
        assert record.code_hash != code

    @pytest.mark.asyncio
    async def test_notifier_receives_purpose(self, engine, notifier):
        await issue(engine, notifier, purpose=OTPPurpose.PASSWORD_RESET)

        identity, purpose, _ = notifier.sent[0]
        assert identity == PHONE
        assert purpose == OTPPurpose.PASSWORD_RESET

    @pytest.mark.asyncio
    async def test_purpose_accepts_string(self, engine, notifier):
        result, _ = await issue(engine, notifier, purpose="registration")
        assert result.otp_id

    @pytest.mark.asyncio
    async def test_invalid_purpose(self, engine):
        with pytest.raises(ValueError):
            await engine.generate(PHONE, "two_factor")

    @pytest.mark.asyncio
    async def test_invalid_identity(self, engine):
        with pytest.raises(ValueError):
            await engine.generate("not-a-number", OTPPurpose.LOGIN)

    @pytest.mark.asyncio
    async def test_identity_is_normalized(self, engine, notifier, clock):
        """Formatting variants of one phone share cooldown and supersession."""
        await issue(engine, notifier, identity="(555) 123-4567")

        with pytest.raises(ResendCooldownError):
            await engine.generate("+1 555 123 4567", OTPPurpose.LOGIN)

    @pytest.mark.asyncio
    async def test_configured_code_length(self, records, counters, clock):
        notifier = RecordingNotifier()
        engine = VerificationEngine(
            records, counters, notifier, OTPConfig(code_length=8), clock=clock.now
        )

        await engine.generate(EMAIL, OTPPurpose.EMAIL_VERIFICATION)
        await engine.drain()

        assert len(notifier.last_code(EMAIL)) == 8


class TestValidate:
    """Tests for validating codes."""

    @pytest.mark.asyncio
    async def test_round_trip(self, engine, notifier, records):
        """The delivered code validates exactly once."""
        result, code = await issue(engine, notifier, metadata={"user_id": "u-1"})

        validation = await engine.validate(result.otp_id, code)

        assert validation.success is True
        assert validation.error is None
        assert validation.metadata == {"user_id": "u-1"}

        record = await records.get(result.otp_id)
        assert record.status == OTPStatus.USED
        assert record.used_at is not None

    @pytest.mark.asyncio
    async def test_lockout_after_max_attempts(self, engine, notifier, records):
        """Four wrong codes count down, the fifth locks the record."""
        result, code = await issue(engine, notifier)

        for expected_remaining in (4, 3, 2, 1):
            validation = await engine.validate(result.otp_id, WRONG_CODE)
            assert validation.success is False
            assert validation.error == OTPErrorCode.INVALID_CODE
            assert validation.attempts_remaining == expected_remaining

        validation = await engine.validate(result.otp_id, WRONG_CODE)
        assert validation.error == OTPErrorCode.ATTEMPTS_EXCEEDED
        assert validation.attempts_remaining == 0

        record = await records.get(result.otp_id)
        assert record.status == OTPStatus.LOCKED
        assert record.attempts == 5

        # Even the right code is refused once locked
        validation = await engine.validate(result.otp_id, code)
        assert validation.error == OTPErrorCode.ATTEMPTS_EXCEEDED
        assert (await records.get(result.otp_id)).attempts == 5

    @pytest.mark.asyncio
    async def test_replay_rejected(self, engine, notifier):
        """A used code cannot be validated again."""
        result, code = await issue(engine, notifier)
        assert (await engine.validate(result.otp_id, code)).success is True

        validation = await engine.validate(result.otp_id, code)

        assert validation.success is False
        assert validation.error == OTPErrorCode.ALREADY_USED

    @pytest.mark.asyncio
    async def test_expired_code(self, engine, notifier, records, clock):
        """Expiry is reported without counting an attempt."""
        result, code = await issue(engine, notifier)
        clock.advance(minutes=11)

        validation = await engine.validate(result.otp_id, code)

        assert validation.error == OTPErrorCode.EXPIRED
        assert (await records.get(result.otp_id)).attempts == 0

    @pytest.mark.asyncio
    async def test_valid_until_expiry(self, engine, notifier, clock):
        result, code = await issue(engine, notifier)
        clock.advance(minutes=9, seconds=59)

        assert (await engine.validate(result.otp_id, code)).success is True

    @pytest.mark.asyncio
    async def test_valid_at_exact_expiry(self, engine, notifier, records, clock):
        """A code is still accepted at the instant it expires."""
        result, code = await issue(engine, notifier)
        clock.current = result.expires_at

        validation = await engine.validate(result.otp_id, code)

        assert validation.success is True
        assert (await records.get(result.otp_id)).status == OTPStatus.USED

    @pytest.mark.asyncio
    async def test_wrong_code_at_exact_expiry(self, engine, notifier, records, clock):
        """A wrong guess at the expiry instant counts as an attempt."""
        result, _ = await issue(engine, notifier)
        clock.current = result.expires_at

        validation = await engine.validate(result.otp_id, WRONG_CODE)

        assert validation.error == OTPErrorCode.INVALID_CODE
        assert (await records.get(result.otp_id)).attempts == 1

    @pytest.mark.asyncio
    async def test_unknown_id(self, engine):
        validation = await engine.validate("does-not-exist", "123456")

        assert validation.success is False
        assert validation.error == OTPErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_superseded_code(self, engine, notifier, records, clock):
        """Issuing a new code retires the previous one."""
        first, first_code = await issue(engine, notifier)
        clock.advance(seconds=61)
        second, second_code = await issue(engine, notifier)

        assert (await records.get(first.otp_id)).status == OTPStatus.SUPERSEDED

        validation = await engine.validate(first.otp_id, first_code)
        assert validation.error == OTPErrorCode.SUPERSEDED

        assert (await engine.validate(second.otp_id, second_code)).success is True

    @pytest.mark.asyncio
    async def test_validate_survives_counter_outage(self, records, notifier, clock):
        """Validation only depends on the record store."""
        from otp_core.stores.memory import InMemoryCounterStore

        healthy = VerificationEngine(
            records, InMemoryCounterStore(clock=clock.time), notifier, clock=clock.now
        )
        result, code = await issue(healthy, notifier)

        degraded = VerificationEngine(records, DownCounterStore(), notifier, clock=clock.now)
        assert (await degraded.validate(result.otp_id, code)).success is True


class TestCooldownAndRateLimit:
    """Tests for issuance throttling."""

    @pytest.mark.asyncio
    async def test_cooldown(self, engine, notifier, clock):
        """A second request inside the cooldown is refused with the wait time."""
        await issue(engine, notifier)

        with pytest.raises(ResendCooldownError) as exc_info:
            await engine.generate(PHONE, OTPPurpose.LOGIN)
        assert exc_info.value.retry_after == 60
        assert exc_info.value.code == OTPErrorCode.RESEND_COOLDOWN

        clock.advance(seconds=30)
        with pytest.raises(ResendCooldownError) as exc_info:
            await engine.generate(PHONE, OTPPurpose.LOGIN)
        assert exc_info.value.retry_after == 30

    @pytest.mark.asyncio
    async def test_cooldown_does_not_supersede(self, engine, notifier, records):
        """A refused request leaves the active code usable."""
        result, code = await issue(engine, notifier)

        with pytest.raises(ResendCooldownError):
            await engine.generate(PHONE, OTPPurpose.LOGIN)

        assert (await engine.validate(result.otp_id, code)).success is True

    @pytest.mark.asyncio
    async def test_rate_limit(self, engine, notifier, clock):
        """The fourth code inside the hour is refused until the window ends."""
        for _ in range(3):
            await issue(engine, notifier)
            clock.advance(seconds=61)

        with pytest.raises(RateLimitedError) as exc_info:
            await engine.generate(PHONE, OTPPurpose.LOGIN)

        retry_after = exc_info.value.retry_after
        assert 0 < retry_after <= 3600
        assert len(notifier.sent) == 3

        clock.advance(seconds=retry_after)
        result, _ = await issue(engine, notifier)
        assert result.otp_id

    @pytest.mark.asyncio
    async def test_rate_limit_is_per_purpose(self, engine, notifier, clock):
        for _ in range(3):
            await issue(engine, notifier)
            clock.advance(seconds=61)

        result, _ = await issue(engine, notifier, purpose=OTPPurpose.REGISTRATION)
        assert result.otp_id

    @pytest.mark.asyncio
    async def test_zero_cooldown(self, records, counters, notifier, clock):
        engine = VerificationEngine(
            records, counters, notifier, OTPConfig(resend_cooldown_seconds=0), clock=clock.now
        )

        await issue(engine, notifier)
        result, _ = await issue(engine, notifier)
        assert result.otp_id


class TestResend:
    """Tests for re-issuing codes."""

    @pytest.mark.asyncio
    async def test_resend_after_expiry(self, engine, notifier, records, clock):
        """Resend works when the previous code already expired."""
        first, _ = await issue(engine, notifier, metadata={"flow": "signup"})
        clock.advance(minutes=11)

        second = await engine.resend(PHONE, OTPPurpose.LOGIN)
        await engine.drain()
        code = notifier.last_code(PHONE)

        assert second.otp_id != first.otp_id
        assert (await records.get(first.otp_id)).status == OTPStatus.SUPERSEDED

        validation = await engine.validate(second.otp_id, code)
        assert validation.success is True
        assert validation.metadata == {"flow": "signup"}

    @pytest.mark.asyncio
    async def test_resend_honours_cooldown(self, engine, notifier):
        await issue(engine, notifier)

        with pytest.raises(ResendCooldownError):
            await engine.resend(PHONE, OTPPurpose.LOGIN)

    @pytest.mark.asyncio
    async def test_resend_without_previous_code(self, engine, notifier):
        result = await engine.resend(EMAIL, OTPPurpose.EMAIL_VERIFICATION)
        await engine.drain()

        assert result.attempts_remaining == 5
        assert notifier.last_code(EMAIL)

    @pytest.mark.asyncio
    async def test_resend_counts_against_issue_window(self, engine, notifier, clock):
        """Generate and resend share the issue quota."""
        await issue(engine, notifier)
        clock.advance(seconds=61)
        await engine.resend(PHONE, OTPPurpose.LOGIN)
        clock.advance(seconds=61)
        await engine.resend(PHONE, OTPPurpose.LOGIN)
        clock.advance(seconds=61)

        with pytest.raises(RateLimitedError):
            await engine.generate(PHONE, OTPPurpose.LOGIN)
        with pytest.raises(RateLimitedError):
            await engine.resend(PHONE, OTPPurpose.LOGIN)


class TestDelivery:
    """Tests for notifier hand-off."""

    @pytest.mark.asyncio
    async def test_rejected_delivery_keeps_record(self, records, counters, clock):
        """A notifier refusal does not invalidate the issued code."""
        notifier = RecordingNotifier(accept=False)
        engine = VerificationEngine(records, counters, notifier, clock=clock.now)

        result, code = await issue(engine, notifier)

        assert (await engine.validate(result.otp_id, code)).success is True

    @pytest.mark.asyncio
    async def test_failing_notifier_does_not_raise(self, records, counters, clock):
        from otp_core.metrics import OTP_REGISTRY

        def failures():
            sample = OTP_REGISTRY.get_sample_value("otp_delivery_failures_total", {"purpose": "login"})
            return sample or 0

        class BrokenNotifier:
            async def send(self, identity, purpose, code):
                raise ConnectionError("smtp down")

        engine = VerificationEngine(records, counters, BrokenNotifier(), clock=clock.now)
        before = failures()

        result = await engine.generate(PHONE, OTPPurpose.LOGIN)
        await engine.drain()

        assert result.otp_id
        assert (await records.get(result.otp_id)).status == OTPStatus.ACTIVE
        assert failures() == before + 1


class TestStoreFailures:
    """Tests for store outages and timeouts."""

    @pytest.mark.asyncio
    async def test_generate_fails_closed_without_counters(self, records, notifier, clock):
        """No code is issued while the counter store is down."""
        engine = VerificationEngine(records, DownCounterStore(), notifier, clock=clock.now)

        with pytest.raises(TransientError) as exc_info:
            await engine.generate(PHONE, OTPPurpose.LOGIN)

        assert exc_info.value.retryable is True
        assert await records.latest_for(PHONE, OTPPurpose.LOGIN) is None
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_counter_write_failure_leaves_no_record(self, records, notifier, clock):
        """A failed window increment stores nothing, so the retry is not in cooldown."""
        counters = FlakyCounterStore(clock=clock.time)
        engine = VerificationEngine(records, counters, notifier, clock=clock.now)

        with pytest.raises(TransientError):
            await engine.generate(PHONE, OTPPurpose.LOGIN)

        assert await records.latest_for(PHONE, OTPPurpose.LOGIN) is None
        assert notifier.sent == []

        counters.fail_incr = False
        clock.advance(seconds=1)
        result, code = await issue(engine, notifier)

        assert (await engine.validate(result.otp_id, code)).success is True

    @pytest.mark.asyncio
    async def test_failed_insert_keeps_previous_code(self, counters, notifier, clock):
        """A failed supersede-and-insert leaves the earlier code as the only active one."""
        records = FailingInsertRecordStore()
        engine = VerificationEngine(records, counters, notifier, clock=clock.now)
        first, first_code = await issue(engine, notifier)

        records.fail_insert = True
        clock.advance(seconds=61)
        with pytest.raises(TransientError):
            await engine.generate(PHONE, OTPPurpose.LOGIN)
        await engine.drain()

        active = [r for r in records._records.values() if r.status == OTPStatus.ACTIVE]
        assert [r.id for r in active] == [first.otp_id]
        assert len(notifier.sent) == 1
        assert (await engine.validate(first.otp_id, first_code)).success is True

    @pytest.mark.asyncio
    async def test_insert_timeout_keeps_previous_code(self, counters, notifier, clock):
        """A hung supersede-and-insert times out without touching the earlier code."""
        records = SlowInsertRecordStore()
        config = OTPConfig(store_timeout_ms=20)
        engine = VerificationEngine(records, counters, notifier, config, clock=clock.now)
        first, _ = await issue(engine, notifier)

        records.slow_insert = True
        clock.advance(seconds=61)
        with pytest.raises(TransientError, match="timed out"):
            await engine.generate(PHONE, OTPPurpose.LOGIN)
        await engine.drain()

        active = [r for r in records._records.values() if r.status == OTPStatus.ACTIVE]
        assert [r.id for r in active] == [first.otp_id]
        assert len(records._records) == 1
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_record_store_down(self, counters, notifier, clock):
        engine = VerificationEngine(DownRecordStore(), counters, notifier, clock=clock.now)

        with pytest.raises(TransientError):
            await engine.generate(PHONE, OTPPurpose.LOGIN)
        with pytest.raises(TransientError):
            await engine.validate("otp-1", "123456")
        with pytest.raises(TransientError):
            await engine.stats()

    @pytest.mark.asyncio
    async def test_record_store_timeout(self, counters, notifier, clock):
        """Slow store calls are cut off at the configured timeout."""
        config = OTPConfig(store_timeout_ms=20)
        engine = VerificationEngine(SlowRecordStore(), counters, notifier, config, clock=clock.now)

        with pytest.raises(TransientError, match="timed out"):
            await engine.validate("otp-1", "123456")


class TestQueries:
    """Tests for attempt info and stats."""

    @pytest.mark.asyncio
    async def test_attempt_info_without_record(self, engine):
        info = await engine.attempt_info(PHONE, OTPPurpose.LOGIN)

        assert info.attempts == 0
        assert info.max_attempts == 5
        assert info.is_blocked is False
        assert info.otp_id is None

    @pytest.mark.asyncio
    async def test_attempt_info_tracks_failures(self, engine, notifier, clock):
        result, _ = await issue(engine, notifier)
        for _ in range(2):
            await engine.validate(result.otp_id, WRONG_CODE)

        info = await engine.attempt_info("(555) 123-4567", OTPPurpose.LOGIN)

        assert info.attempts == 2
        assert info.is_blocked is False
        assert info.status == OTPStatus.ACTIVE
        assert info.last_attempt_at == clock.now()
        assert info.otp_id == result.otp_id

    @pytest.mark.asyncio
    async def test_attempt_info_blocked(self, engine, notifier):
        result, _ = await issue(engine, notifier)
        for _ in range(5):
            await engine.validate(result.otp_id, WRONG_CODE)

        info = await engine.attempt_info(PHONE, OTPPurpose.LOGIN)

        assert info.is_blocked is True
        assert info.status == OTPStatus.LOCKED

    @pytest.mark.asyncio
    async def test_stats(self, engine, notifier, clock):
        """Counts every record by its effective status."""
        used, used_code = await issue(engine, notifier, identity="+15550000001")
        await engine.validate(used.otp_id, used_code)

        locked, _ = await issue(engine, notifier, identity="+15550000002")
        for _ in range(5):
            await engine.validate(locked.otp_id, WRONG_CODE)

        await issue(engine, notifier, identity="+15550000003")
        clock.advance(seconds=61)
        await issue(engine, notifier, identity="+15550000003")

        await issue(engine, notifier, identity="+15550000004")
        clock.advance(minutes=11)
        await issue(engine, notifier, identity="+15550000005")

        stats = await engine.stats()

        assert stats.total == 6
        assert stats.used == 1
        assert stats.locked == 1
        assert stats.superseded == 1
        assert stats.expired == 2
        assert stats.active == 1
