"""
OTP Primitives
==============
Code generation, hashing, identity normalization and record models.
"""

from .models import (
    OTPPurpose,
    OTPStatus,
    OTPRecord,
    GenerateResult,
    ValidationResult,
    AttemptInfo,
    OTPStats,
    TERMINAL_ERRORS,
    utc_now,
    ensure_utc,
)
from .hashing import generate_code, generate_salt, hash_code, verify_code_hash
from .identity import normalize_identity, normalize_phone, normalize_email, mask_identity, validate_e164

__all__ = [
    # Models
    "OTPPurpose",
    "OTPStatus",
    "OTPRecord",
    "GenerateResult",
    "ValidationResult",
    "AttemptInfo",
    "OTPStats",
    "TERMINAL_ERRORS",
    "utc_now",
    "ensure_utc",
    # Hashing
    "generate_code",
    "generate_salt",
    "hash_code",
    "verify_code_hash",
    # Identity
    "normalize_identity",
    "normalize_phone",
    "normalize_email",
    "mask_identity",
    "validate_e164",
]
