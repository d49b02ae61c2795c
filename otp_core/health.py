"""
Health Reporting
================
Probes the record and counter stores and reports aggregate status.
"""

import asyncio
import time
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

import structlog
from pydantic import BaseModel

from .config import OTPConfig
from .otp.models import OTPStatus, utc_now
from .stores.base import CounterStore, RecordStore

logger = structlog.get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    status: str
    latency_ms: Optional[float] = None
    error: Optional[str] = None

    @property
    def up(self) -> bool:
        return self.status == "connected"


class HealthReport(BaseModel):
    record_store_up: bool
    counter_store_up: bool
    overall: bool
    status: HealthStatus
    components: Dict[str, ComponentHealth]
    active_otps: Optional[int] = None
    timestamp: float


class HealthReporter:
    """
    Aggregate health of the OTP engine's stores.

    A counter store outage alone is ``degraded``: rate limiting is
    best-effort and validation still works. A record store outage is
    ``unhealthy``.
    """

    def __init__(
        self,
        records: RecordStore,
        counters: CounterStore,
        config: Optional[OTPConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.records = records
        self.counters = counters
        self.config = config or OTPConfig()
        self._clock = clock

    async def _probe(self, name: str, ping: Callable[[], Awaitable[bool]]) -> ComponentHealth:
        """Check one store's connectivity and latency."""
        start = time.time()
        try:
            ok = await asyncio.wait_for(ping(), timeout=self.config.health_timeout)
        except asyncio.TimeoutError:
            logger.error("Health check timed out", component=name)
            return ComponentHealth(status="error", error="timeout")
        except Exception as e:
            logger.error("Health check failed", component=name, error=str(e))
            return ComponentHealth(status="error", error=str(e))

        if not ok:
            return ComponentHealth(status="error", error="ping returned false")
        latency = (time.time() - start) * 1000
        return ComponentHealth(status="connected", latency_ms=round(latency, 2))

    async def check(self) -> HealthReport:
        """Comprehensive health check with all component statuses."""
        record_health, counter_health = await asyncio.gather(
            self._probe("record_store", self.records.ping),
            self._probe("counter_store", self.counters.ping),
        )

        record_up = record_health.up
        counter_up = counter_health.up

        if not record_up:
            status = HealthStatus.UNHEALTHY
        elif not counter_up:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        active_otps = None
        if record_up:
            try:
                counts = await asyncio.wait_for(
                    self.records.count_by_status(self._clock()),
                    timeout=self.config.health_timeout,
                )
                active_otps = counts.get(OTPStatus.ACTIVE, 0)
            except Exception as e:
                logger.warning("Active OTP count unavailable", error=str(e))

        return HealthReport(
            record_store_up=record_up,
            counter_store_up=counter_up,
            overall=record_up and counter_up,
            status=status,
            components={
                "record_store": record_health,
                "counter_store": counter_health,
            },
            active_otps=active_otps,
            timestamp=time.time(),
        )
