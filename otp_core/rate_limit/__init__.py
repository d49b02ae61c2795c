"""
Rate Limiting
=============
Fixed-window OTP rate limiting backed by the counter store.
"""

from .models import RateKind, RateLimitInfo, RateWindow
from .limiter import OTPRateLimiter

__all__ = [
    # Models
    "RateKind",
    "RateLimitInfo",
    "RateWindow",
    # Limiter
    "OTPRateLimiter",
]
