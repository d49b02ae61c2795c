"""
OTP Rate Limiter
================
Fixed-window limiter over a counter store, keyed per identity, purpose and kind.
"""

import time
from typing import TYPE_CHECKING, Callable, Optional

import structlog

from ..otp.models import OTPPurpose
from .models import RateKind, RateLimitInfo, RateWindow

if TYPE_CHECKING:
    from ..stores.base import CounterStore

logger = structlog.get_logger(__name__)


class OTPRateLimiter:
    """
    Fixed-window rate limiter for OTP events.

    The window starts at the first counted event and the counter store
    expires it after ``window_seconds``, so no cleanup is needed.
    ``peek`` never mutates; ``hit`` counts one event.
    """

    def __init__(
        self,
        counters: "CounterStore",
        limit: int = 3,
        window_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.counters = counters
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock

    def key(self, identity: str, purpose: OTPPurpose, kind: RateKind) -> str:
        """Generate a rate window key."""
        return f"otp:rate:{kind.value}:{purpose.value}:{identity}"

    async def peek(self, identity: str, purpose: OTPPurpose, kind: RateKind) -> RateLimitInfo:
        """Check whether one more event fits in the current window."""
        window = await self.counters.get(self.key(identity, purpose, kind))
        return self._info(window, counting=False)

    async def hit(self, identity: str, purpose: OTPPurpose, kind: RateKind) -> RateLimitInfo:
        """Count one event, creating the window if absent."""
        window = await self.counters.incr(self.key(identity, purpose, kind), self.window_seconds)
        info = self._info(window, counting=True)
        logger.debug(
            "Rate window incremented",
            kind=kind.value,
            purpose=purpose.value,
            count=window.count,
            remaining=info.remaining,
        )
        return info

    def _info(self, window: Optional[RateWindow], counting: bool) -> RateLimitInfo:
        now = int(self._clock())
        if window is None:
            return RateLimitInfo(
                allowed=True,
                remaining=self.limit,
                limit=self.limit,
                reset_at=now + self.window_seconds,
            )

        ttl = window.ttl_seconds if window.ttl_seconds > 0 else self.window_seconds
        reset_at = now + ttl
        # After a hit the event itself is inside the window
        over = window.count > self.limit if counting else window.count >= self.limit

        if over:
            return RateLimitInfo(
                allowed=False,
                remaining=0,
                limit=self.limit,
                reset_at=reset_at,
                retry_after=ttl,
            )
        return RateLimitInfo(
            allowed=True,
            remaining=max(0, self.limit - window.count),
            limit=self.limit,
            reset_at=reset_at,
        )
