"""
OTP Errors
==========
Typed error taxonomy for OTP issuance and verification.

Every error carries a stable ``OTPErrorCode`` plus the data a caller needs to
render a precise message (``retry_after``, ``attempts_remaining``).
Only ``TransientError`` is eligible for caller-side retry.
"""

from enum import Enum
from typing import Optional


class OTPErrorCode(str, Enum):
    """Stable error codes returned to callers."""
    RATE_LIMITED = "rate_limited"
    RESEND_COOLDOWN = "resend_cooldown"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"
    SUPERSEDED = "superseded"
    INVALID_CODE = "invalid_code"
    TRANSIENT_ERROR = "transient_error"


START_OVER_MESSAGE = "This code is no longer valid. Please request a new one."

_USER_MESSAGES = {
    OTPErrorCode.RATE_LIMITED: "Too many codes requested. Please try again later.",
    OTPErrorCode.RESEND_COOLDOWN: "Please wait before requesting a new code.",
    OTPErrorCode.NOT_FOUND: START_OVER_MESSAGE,
    OTPErrorCode.EXPIRED: START_OVER_MESSAGE,
    OTPErrorCode.SUPERSEDED: START_OVER_MESSAGE,
    OTPErrorCode.ALREADY_USED: "This code has already been used.",
    OTPErrorCode.ATTEMPTS_EXCEEDED: "Too many incorrect attempts. Please request a new code.",
    OTPErrorCode.INVALID_CODE: "Incorrect code. Please try again.",
    OTPErrorCode.TRANSIENT_ERROR: "We are experiencing a temporary issue. Please try again shortly.",
}


def user_message(code: OTPErrorCode) -> str:
    """
    Get the user-facing message for an error code.

    Expired, superseded and unknown codes share one "start over" message so
    the caller does not reveal record state to a guesser.
    """
    return _USER_MESSAGES[code]


class OTPError(Exception):
    """Base class for all OTP errors."""

    code: OTPErrorCode = OTPErrorCode.TRANSIENT_ERROR

    def __init__(
        self,
        message: str = "",
        retry_after: Optional[int] = None,
        attempts_remaining: Optional[int] = None,
    ):
        super().__init__(message or self.code.value)
        self.message = message or self.code.value
        self.retry_after = retry_after
        self.attempts_remaining = attempts_remaining

    @property
    def retryable(self) -> bool:
        return self.code == OTPErrorCode.TRANSIENT_ERROR

    @property
    def user_message(self) -> str:
        return user_message(self.code)

    def to_dict(self) -> dict:
        data = {"code": self.code.value, "message": self.user_message}
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        if self.attempts_remaining is not None:
            data["attempts_remaining"] = self.attempts_remaining
        return data


class RateLimitedError(OTPError):
    """Too many codes issued for the identity/purpose in the current window."""
    code = OTPErrorCode.RATE_LIMITED


class ResendCooldownError(OTPError):
    """A code was issued too recently for the identity/purpose."""
    code = OTPErrorCode.RESEND_COOLDOWN


class TransientError(OTPError):
    """A backing store timed out or is unavailable."""
    code = OTPErrorCode.TRANSIENT_ERROR


class StoreError(Exception):
    """Raised by store implementations when the backend fails."""

    def __init__(self, message: str, store: str = "", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.store = store
        self.cause = cause


class ConfigurationError(ValueError):
    """Raised when OTP configuration is invalid."""
    pass
