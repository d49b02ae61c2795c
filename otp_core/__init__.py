"""
OTP Core Library
================
One-time passcode issuance and verification for signup, login and reset flows.
"""

__version__ = "1.0.0"

# Config
from otp_core.config import OTPConfig

# Errors
from otp_core.errors import (
    OTPErrorCode,
    OTPError,
    RateLimitedError,
    ResendCooldownError,
    TransientError,
    StoreError,
    ConfigurationError,
    user_message,
)

# OTP primitives
from otp_core.otp import (
    OTPPurpose,
    OTPStatus,
    OTPRecord,
    GenerateResult,
    ValidationResult,
    AttemptInfo,
    OTPStats,
    generate_code,
    hash_code,
    verify_code_hash,
    normalize_identity,
)

# Rate Limiting
from otp_core.rate_limit import OTPRateLimiter, RateKind, RateLimitInfo, RateWindow

# Stores
from otp_core.stores import (
    RecordStore,
    CounterStore,
    InMemoryRecordStore,
    InMemoryCounterStore,
    RedisCounterStore,
    SQLRecordStore,
)

# Engine
from otp_core.engine import VerificationEngine
from otp_core.notifier import Notifier, LoggingNotifier, RecordingNotifier
from otp_core.sweeper import RetentionSweeper, SweepResult, SweepInProgressError
from otp_core.health import HealthReporter, HealthReport, HealthStatus
from otp_core.factory import OTPService, build_service

# Logging
from otp_core.logging_config import configure_logging

__all__ = [
    # Config
    "OTPConfig",
    # Errors
    "OTPErrorCode",
    "OTPError",
    "RateLimitedError",
    "ResendCooldownError",
    "TransientError",
    "StoreError",
    "ConfigurationError",
    "user_message",
    # OTP primitives
    "OTPPurpose",
    "OTPStatus",
    "OTPRecord",
    "GenerateResult",
    "ValidationResult",
    "AttemptInfo",
    "OTPStats",
    "generate_code",
    "hash_code",
    "verify_code_hash",
    "normalize_identity",
    # Rate Limiting
    "OTPRateLimiter",
    "RateKind",
    "RateLimitInfo",
    "RateWindow",
    # Stores
    "RecordStore",
    "CounterStore",
    "InMemoryRecordStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "SQLRecordStore",
    # Engine
    "VerificationEngine",
    "Notifier",
    "LoggingNotifier",
    "RecordingNotifier",
    "RetentionSweeper",
    "SweepResult",
    "SweepInProgressError",
    "HealthReporter",
    "HealthReport",
    "HealthStatus",
    "OTPService",
    "build_service",
    # Logging
    "configure_logging",
]
