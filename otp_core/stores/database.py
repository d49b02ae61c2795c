"""
Database Module
===============
Async engine, session factory and schema for the OTP record store.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine as sa_create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

logger = structlog.get_logger(__name__)

ACTIVE_ONLY = text("status = 'active'")


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


class OTPRecordRow(Base):
    """
    One issued code.

    The partial unique index allows a single active row per
    (identity, purpose); concurrent inserts for the same pair conflict
    instead of both becoming active.
    """
    __tablename__ = "otp_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    identity: Mapped[str] = mapped_column(String(320), nullable=False)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    salt: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    meta: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_otp_records_identity_purpose_created", "identity", "purpose", "created_at"),
        Index("ix_otp_records_expires_at", "expires_at"),
        Index(
            "uq_otp_records_active_pair",
            "identity",
            "purpose",
            unique=True,
            postgresql_where=ACTIVE_ONLY,
            sqlite_where=ACTIVE_ONLY,
        ),
        CheckConstraint("attempts >= 0 AND attempts <= max_attempts", name="ck_otp_records_attempt_ceiling"),
    )


def create_database_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create and configure the async database engine.

    Args:
        database_url: Async connection string (postgresql+asyncpg://... or sqlite+aiosqlite://...)
        pool_size: Connection pool size (ignored for SQLite)
        max_overflow: Max overflow connections (ignored for SQLite)
        pool_pre_ping: Enable connection health checks
        echo: Log SQL statements

    Returns:
        Configured AsyncEngine instance
    """
    kwargs: Dict[str, Any] = {"echo": echo}
    if not database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
        )

    engine = sa_create_async_engine(database_url, **kwargs)
    logger.info("Database engine initialized", dialect=engine.dialect.name)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the record store."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create the OTP tables if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("OTP schema ensured")


async def close_engine(engine: AsyncEngine) -> None:
    """Dispose the engine. Call during application shutdown."""
    await engine.dispose()
    logger.info("Database engine closed")
