"""
OTP Configuration
=================
Policy and connection settings for the OTP engine.
"""

import os
from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Mapping, Optional

from .errors import ConfigurationError

ENV_PREFIX = "OTP_"


@dataclass
class OTPConfig:
    """Configuration for OTP issuance, verification and retention."""
    code_length: int = 6
    expiry_minutes: int = 10
    max_attempts: int = 5
    resend_cooldown_seconds: int = 60
    max_otps_per_window: int = 3
    rate_window_minutes: int = 60
    retention_hours: int = 24
    sweep_batch_size: int = 100
    sweep_interval_seconds: int = 3600
    store_timeout_ms: int = 300
    health_timeout_ms: int = 500
    database_url: str = "sqlite+aiosqlite:///./otp.db"
    redis_url: str = "redis://localhost:6379/0"

    def __post_init__(self):
        if not 1 <= self.code_length <= 12:
            raise ConfigurationError(f"code_length must be between 1 and 12, got {self.code_length}")
        for name in (
            "expiry_minutes",
            "max_attempts",
            "max_otps_per_window",
            "rate_window_minutes",
            "retention_hours",
            "sweep_batch_size",
            "sweep_interval_seconds",
            "store_timeout_ms",
            "health_timeout_ms",
        ):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.resend_cooldown_seconds < 0:
            raise ConfigurationError("resend_cooldown_seconds must not be negative")

    @property
    def expiry(self) -> timedelta:
        return timedelta(minutes=self.expiry_minutes)

    @property
    def resend_cooldown(self) -> timedelta:
        return timedelta(seconds=self.resend_cooldown_seconds)

    @property
    def rate_window_seconds(self) -> int:
        return self.rate_window_minutes * 60

    @property
    def retention(self) -> timedelta:
        return timedelta(hours=self.retention_hours)

    @property
    def store_timeout(self) -> float:
        """Per-call store timeout in seconds."""
        return self.store_timeout_ms / 1000

    @property
    def health_timeout(self) -> float:
        return self.health_timeout_ms / 1000

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, prefix: str = ENV_PREFIX) -> "OTPConfig":
        """
        Build a config from environment variables.

        Each field maps to ``{prefix}{FIELD_NAME}``, e.g. ``OTP_CODE_LENGTH``.
        Unset variables keep their defaults.

        Raises:
            ConfigurationError: If a value cannot be parsed or is out of range
        """
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(f"{prefix}{f.name.upper()}")
            if raw is None or raw == "":
                continue
            if f.type in (int, "int"):
                try:
                    values[f.name] = int(raw)
                except ValueError:
                    raise ConfigurationError(f"{prefix}{f.name.upper()} must be an integer, got {raw!r}")
            else:
                values[f.name] = raw
        return cls(**values)
