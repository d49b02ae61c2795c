"""
SQL Record Store
================
SQLAlchemy async record store. PostgreSQL in production, SQLite for tests.

Status transitions are single conditional UPDATE statements; supersession
and insert share one transaction backed by a partial unique index.
"""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import structlog
from sqlalchemy import and_, case, delete, func, insert, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import StoreError
from ..otp.models import OTPPurpose, OTPRecord, OTPStatus, ensure_utc
from .base import RecordStore
from .database import OTPRecordRow

logger = structlog.get_logger(__name__)

otp_records = OTPRecordRow.__table__
c = otp_records.c


def _to_columns(record: OTPRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "identity": record.identity,
        "purpose": record.purpose.value,
        "code_hash": record.code_hash,
        "salt": record.salt,
        "status": record.status.value,
        "attempts": record.attempts,
        "max_attempts": record.max_attempts,
        "expires_at": record.expires_at,
        "created_at": record.created_at,
        "last_attempt_at": record.last_attempt_at,
        "used_at": record.used_at,
        "metadata": dict(record.metadata),
    }


def _to_record(row: Mapping[str, Any]) -> OTPRecord:
    return OTPRecord(
        id=row["id"],
        identity=row["identity"],
        purpose=OTPPurpose(row["purpose"]),
        code_hash=row["code_hash"],
        salt=row["salt"],
        status=OTPStatus(row["status"]),
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        expires_at=ensure_utc(row["expires_at"]),
        created_at=ensure_utc(row["created_at"]),
        last_attempt_at=ensure_utc(row["last_attempt_at"]),
        used_at=ensure_utc(row["used_at"]),
        metadata=dict(row["metadata"] or {}),
    )


def _open_for_update(otp_id: str, now: datetime):
    """Condition under which a record may still change state."""
    return and_(
        c.id == otp_id,
        c.status == OTPStatus.ACTIVE.value,
        c.expires_at >= now,
        c.attempts < c.max_attempts,
    )


class SQLRecordStore(RecordStore):
    """Durable record store over an async SQLAlchemy session factory."""

    name = "sql_record_store"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_conflict_retries: int = 3,
    ):
        self._session_factory = session_factory
        self.max_conflict_retries = max_conflict_retries

    async def get(self, otp_id: str) -> Optional[OTPRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(otp_records).where(c.id == otp_id))
                row = result.mappings().first()
        except SQLAlchemyError as e:
            raise self._error("get", e)
        return _to_record(row) if row else None

    async def latest_for(self, identity: str, purpose: OTPPurpose) -> Optional[OTPRecord]:
        stmt = (
            select(otp_records)
            .where(c.identity == identity, c.purpose == purpose.value)
            .order_by(c.created_at.desc())
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                row = result.mappings().first()
        except SQLAlchemyError as e:
            raise self._error("latest_for", e)
        return _to_record(row) if row else None

    async def insert_superseding(self, record: OTPRecord) -> int:
        supersede = (
            update(otp_records)
            .where(
                c.identity == record.identity,
                c.purpose == record.purpose.value,
                c.status == OTPStatus.ACTIVE.value,
            )
            .values(status=OTPStatus.SUPERSEDED.value)
        )

        for attempt in range(1, self.max_conflict_retries + 1):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        result = await session.execute(supersede)
                        superseded = result.rowcount or 0
                        await session.execute(insert(otp_records).values(**_to_columns(record)))
                return superseded
            except IntegrityError as e:
                # Another transaction committed an active row for the pair first
                logger.info(
                    "Active record conflict, retrying supersession",
                    purpose=record.purpose.value,
                    attempt=attempt,
                )
                if attempt == self.max_conflict_retries:
                    raise self._error("insert_superseding", e)
            except SQLAlchemyError as e:
                raise self._error("insert_superseding", e)
        return 0

    async def mark_used(self, otp_id: str, now: datetime) -> bool:
        stmt = (
            update(otp_records)
            .where(_open_for_update(otp_id, now))
            .values(status=OTPStatus.USED.value, used_at=now)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    updated = result.rowcount
        except SQLAlchemyError as e:
            raise self._error("mark_used", e)
        return updated == 1

    async def record_failed_attempt(self, otp_id: str, now: datetime) -> Optional[OTPRecord]:
        # SET expressions read the pre-update row, so both use the old attempts value
        stmt = (
            update(otp_records)
            .where(_open_for_update(otp_id, now))
            .values(
                attempts=c.attempts + 1,
                last_attempt_at=now,
                status=case(
                    (c.attempts + 1 >= c.max_attempts, OTPStatus.LOCKED.value),
                    else_=c.status,
                ),
            )
            .returning(*c)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    row = result.mappings().first()
        except SQLAlchemyError as e:
            raise self._error("record_failed_attempt", e)
        return _to_record(row) if row else None

    async def find_expired(self, cutoff: datetime, limit: int) -> List[OTPRecord]:
        stmt = (
            select(otp_records)
            .where(c.expires_at < cutoff)
            .order_by(c.expires_at)
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.mappings().all()
        except SQLAlchemyError as e:
            raise self._error("find_expired", e)
        return [_to_record(row) for row in rows]

    async def delete(self, otp_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(delete(otp_records).where(c.id == otp_id))
                    deleted = result.rowcount
        except SQLAlchemyError as e:
            raise self._error("delete", e)
        return deleted == 1

    async def count_by_status(self, now: datetime) -> Dict[OTPStatus, int]:
        effective = case(
            (
                and_(c.status == OTPStatus.ACTIVE.value, c.expires_at < now),
                OTPStatus.EXPIRED.value,
            ),
            else_=c.status,
        )
        projected = select(effective.label("effective")).subquery()
        stmt = select(projected.c.effective, func.count()).group_by(projected.c.effective)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as e:
            raise self._error("count_by_status", e)
        return {OTPStatus(status): count for status, count in rows}

    async def ping(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise self._error("ping", e)
        return True

    def _error(self, operation: str, e: SQLAlchemyError) -> StoreError:
        logger.error("Record store operation failed", operation=operation, error=str(e))
        return StoreError(f"{operation} failed: {e}", store=self.name, cause=e)
