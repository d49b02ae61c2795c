"""
Engine Wiring
=============
Builds the engine, sweeper and health reporter from configuration.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import OTPConfig
from .engine import VerificationEngine
from .health import HealthReporter
from .notifier import LoggingNotifier, Notifier
from .stores.database import close_engine, create_database_engine, create_schema, create_session_factory
from .stores.redis_counter import RedisCounterStore, create_redis_client
from .stores.sql import SQLRecordStore
from .sweeper import RetentionSweeper

logger = structlog.get_logger(__name__)


@dataclass
class OTPService:
    """The wired components plus the connections they own."""
    engine: VerificationEngine
    sweeper: RetentionSweeper
    health: HealthReporter
    db_engine: AsyncEngine
    redis_client: object

    async def close(self) -> None:
        await self.sweeper.stop()
        await self.engine.drain()
        await self.redis_client.aclose()
        await close_engine(self.db_engine)


async def build_service(
    config: Optional[OTPConfig] = None,
    notifier: Optional[Notifier] = None,
    create_tables: bool = False,
) -> OTPService:
    """
    Wire a production service: SQL record store and Redis counter store.

    Args:
        config: Settings (default: ``OTPConfig.from_env()``)
        notifier: Delivery collaborator (default: LoggingNotifier)
        create_tables: Create the schema if missing
    """
    config = config or OTPConfig.from_env()

    db_engine = create_database_engine(config.database_url)
    if create_tables:
        await create_schema(db_engine)

    redis_client = create_redis_client(config.redis_url, socket_timeout=config.store_timeout)

    records = SQLRecordStore(create_session_factory(db_engine))
    counters = RedisCounterStore(redis_client)

    engine = VerificationEngine(records, counters, notifier or LoggingNotifier(), config)
    logger.info("OTP service wired", record_store=records.name, counter_store=counters.name)

    return OTPService(
        engine=engine,
        sweeper=RetentionSweeper(records, config),
        health=HealthReporter(records, counters, config),
        db_engine=db_engine,
        redis_client=redis_client,
    )
