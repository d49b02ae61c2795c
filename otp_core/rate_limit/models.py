"""
Rate Limit Models
=================
Data models for OTP rate windows and limiter decisions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RateKind(str, Enum):
    """Event kinds counted per identity/purpose."""
    OTP_ISSUE = "otp_issue"
    OTP_RESEND = "otp_resend"


@dataclass
class RateWindow:
    """A fixed counting window held in the counter store."""
    key: str
    count: int
    window_start: float  # Unix timestamp
    ttl_seconds: int     # Seconds until the entry self-expires


@dataclass
class RateLimitInfo:
    """Rate limit check result with quota information."""
    allowed: bool
    remaining: int
    limit: int
    reset_at: int  # Unix timestamp
    retry_after: Optional[int] = None  # Seconds until retry allowed
