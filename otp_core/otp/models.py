"""
OTP Models
==========
Data models and enums for OTP records and engine results.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import OTPErrorCode


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class OTPPurpose(str, Enum):
    """Context an OTP is issued for."""
    REGISTRATION = "registration"
    LOGIN = "login"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


class OTPStatus(str, Enum):
    """
    Record status.

    ``EXPIRED`` is never stored; it is the projection of an ``ACTIVE``
    record read after ``expires_at``.
    """
    ACTIVE = "active"
    USED = "used"
    LOCKED = "locked"
    SUPERSEDED = "superseded"
    EXPIRED = "expired"


TERMINAL_ERRORS = {
    OTPStatus.USED: OTPErrorCode.ALREADY_USED,
    OTPStatus.LOCKED: OTPErrorCode.ATTEMPTS_EXCEEDED,
    OTPStatus.SUPERSEDED: OTPErrorCode.SUPERSEDED,
    OTPStatus.EXPIRED: OTPErrorCode.EXPIRED,
}


@dataclass
class OTPRecord:
    """One issued code. The plaintext code is never stored."""
    id: str
    identity: str
    purpose: OTPPurpose
    code_hash: str
    salt: str
    expires_at: datetime
    created_at: datetime
    max_attempts: int
    attempts: int = 0
    status: OTPStatus = OTPStatus.ACTIVE
    metadata: Dict[str, Any] = field(default_factory=dict)
    last_attempt_at: Optional[datetime] = None
    used_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) > self.expires_at

    def effective_status(self, now: Optional[datetime] = None) -> OTPStatus:
        if self.status == OTPStatus.ACTIVE and self.is_expired(now):
            return OTPStatus.EXPIRED
        return self.status

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)


@dataclass
class GenerateResult:
    """Result of issuing (or re-issuing) a code."""
    otp_id: str
    expires_at: datetime
    attempts_remaining: int


@dataclass
class ValidationResult:
    """Result of a validation attempt."""
    success: bool
    attempts_remaining: int
    error: Optional[OTPErrorCode] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AttemptInfo:
    """Attempt state of the latest code for an identity/purpose."""
    attempts: int
    max_attempts: int
    is_blocked: bool
    status: Optional[OTPStatus] = None
    last_attempt_at: Optional[datetime] = None
    otp_id: Optional[str] = None


@dataclass
class OTPStats:
    """Record counts by effective status."""
    total: int = 0
    active: int = 0
    expired: int = 0
    used: int = 0
    locked: int = 0
    superseded: int = 0
