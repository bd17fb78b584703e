"""
Audit Log Repository

Append-only access to the audit_log table. This is the only module that
writes AuditLog rows; update and delete exist solely to be rejected.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, NoReturn, Optional

from sqlalchemy import Select, and_, distinct, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lexaudit.audit.checksum import to_utc
from lexaudit.audit.errors import ChainConflict, ImmutabilityViolation, StorageError
from lexaudit.audit.risk import HIGH_RISK_THRESHOLD
from lexaudit.models.audit_log import AuditLog, AuditEventCategory, AuditEventType, AuditSeverity

logger = logging.getLogger(__name__)


FILTER_COLUMNS = {
    "event_type": AuditLog.event_type,
    "event_category": AuditLog.event_category,
    "user_id": AuditLog.user_id,
    "username": AuditLog.username,
    "resource": AuditLog.resource,
    "resource_id": AuditLog.resource_id,
    "success": AuditLog.success,
    "severity": AuditLog.severity,
    "ip_address": AuditLog.ip_address,
}


def _filter_clauses(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    **filters: Any,
) -> list:
    clauses = []
    if start is not None:
        clauses.append(AuditLog.timestamp >= to_utc(start))
    if end is not None:
        clauses.append(AuditLog.timestamp <= to_utc(end))
    for key, value in filters.items():
        if value is None:
            continue
        column = FILTER_COLUMNS.get(key)
        if column is None:
            raise ValueError(f"Unsupported audit log filter: {key}")
        clauses.append(column == getattr(value, "value", value))
    return clauses


class AuditRange:
    """
    Entries of a timestamp range in chain order (timestamp, then insertion).

    Nothing is queried until iteration starts, and every iteration runs the
    query again, so the same range can be walked more than once.
    """

    def __init__(self, db: AsyncSession, statement: Select):
        self.db = db
        self.statement = statement

    def __aiter__(self) -> AsyncIterator[AuditLog]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[AuditLog]:
        try:
            result = await self.db.execute(self.statement)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read audit log range: {e}") from e
        for entry in result.scalars():
            yield entry

    async def all(self) -> list[AuditLog]:
        return [entry async for entry in self]


class AuditLogRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def append(self, entry: AuditLog) -> AuditLog:
        """
        Persist a fully-formed entry (checksum and previous_checksum set).

        The entry is flushed, not committed; the caller owns the transaction.

        Raises:
            ChainConflict: another entry already claims entry.previous_checksum
            StorageError: the store rejected the insert for any other reason
        """
        self.db.add(entry)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            if await self._predecessor_claimed(entry.previous_checksum):
                raise ChainConflict(entry.previous_checksum) from e
            raise StorageError(f"Failed to append audit entry {entry.log_id}: {e.orig}") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError(f"Failed to append audit entry {entry.log_id}: {e}") from e
        return entry

    async def _predecessor_claimed(self, previous_checksum: str) -> bool:
        try:
            result = await self.db.execute(
                select(AuditLog.id)
                .where(AuditLog.previous_checksum == previous_checksum)
                .limit(1)
            )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to inspect audit chain: {e}") from e
        return result.scalar_one_or_none() is not None

    async def update(self, log_id: str, **changes: Any) -> NoReturn:
        logger.warning(f"Rejected update of audit entry {log_id} (fields: {sorted(changes)})")
        raise ImmutabilityViolation(log_id=log_id)

    async def delete(self, log_id: str) -> NoReturn:
        logger.warning(f"Rejected delete of audit entry {log_id}")
        raise ImmutabilityViolation(log_id=log_id)

    # ------------------------------------------------------------------
    # Chain reads
    # ------------------------------------------------------------------

    async def find_latest(self) -> Optional[AuditLog]:
        """Return the chain tail (max timestamp, ties by insertion), or None if empty."""
        try:
            result = await self.db.execute(
                select(AuditLog)
                .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
                .limit(1)
            )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read audit chain tail: {e}") from e
        return result.scalar_one_or_none()

    def query_range(self, start: datetime, end: datetime, **filters: Any) -> AuditRange:
        """Entries with start <= timestamp <= end, ascending in chain order."""
        statement = (
            select(AuditLog)
            .where(*_filter_clauses(start, end, **filters))
            .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
        )
        return AuditRange(self.db, statement)

    # ------------------------------------------------------------------
    # Query / reporting surface
    # ------------------------------------------------------------------

    async def _scalars(self, statement: Select) -> list[AuditLog]:
        try:
            result = await self.db.execute(statement)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to query audit log: {e}") from e
        return list(result.scalars().all())

    async def get_by_log_id(self, log_id: str) -> Optional[AuditLog]:
        entries = await self._scalars(select(AuditLog).where(AuditLog.log_id == log_id))
        return entries[0] if entries else None

    async def search(
        self,
        *,
        page: int = 1,
        limit: int = 50,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        **filters: Any,
    ) -> tuple[list[AuditLog], int]:
        """Newest-first page of entries matching the filters, plus the total match count."""
        clauses = _filter_clauses(start, end, **filters)
        entries = await self._scalars(
            select(AuditLog)
            .where(*clauses)
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        try:
            total = (
                await self.db.execute(select(func.count(AuditLog.id)).where(*clauses))
            ).scalar() or 0
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to count audit log entries: {e}") from e
        return entries, total

    async def count_since(self, since: datetime) -> int:
        try:
            result = await self.db.execute(
                select(func.count(AuditLog.id)).where(AuditLog.timestamp >= to_utc(since))
            )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to count audit log entries: {e}") from e
        return result.scalar() or 0

    async def get_user_activity(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[AuditLog]:
        return await self._scalars(
            select(AuditLog)
            .where(*_filter_clauses(start, end, user_id=user_id))
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        )

    async def get_resource_history(self, resource: str, resource_id: Optional[str] = None) -> list[AuditLog]:
        return await self._scalars(
            select(AuditLog)
            .where(*_filter_clauses(resource=resource, resource_id=resource_id))
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        )

    async def get_security_events(self, days: int = 30, now: Optional[datetime] = None) -> list[AuditLog]:
        since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        return await self._scalars(
            select(AuditLog)
            .where(AuditLog.event_category == AuditEventCategory.SECURITY.value)
            .where(AuditLog.timestamp >= to_utc(since))
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        )

    async def get_failed_logins(self, days: int = 7, now: Optional[datetime] = None) -> list[AuditLog]:
        since = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        return await self._scalars(
            select(AuditLog)
            .where(
                or_(
                    AuditLog.event_type == AuditEventType.LOGIN_FAILED.value,
                    and_(
                        AuditLog.event_type == AuditEventType.LOGIN.value,
                        AuditLog.success.is_(False),
                    ),
                )
            )
            .where(AuditLog.timestamp >= to_utc(since))
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        )

    async def get_suspicious_activity(
        self,
        ip_address: str,
        hours: int = 24,
        now: Optional[datetime] = None,
    ) -> list[AuditLog]:
        """Failed logins, blocks and other failed events from one address in the last hours."""
        since = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)
        return await self._scalars(
            select(AuditLog)
            .where(AuditLog.ip_address == ip_address)
            .where(AuditLog.timestamp >= to_utc(since))
            .where(
                or_(
                    AuditLog.event_type.in_([
                        AuditEventType.LOGIN_FAILED.value,
                        AuditEventType.IP_BLOCK.value,
                    ]),
                    AuditLog.success.is_(False),
                )
            )
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        )

    async def find_high_risk(self, limit: int = 50) -> list[AuditLog]:
        """Critical or High severity entries and entries scored at or above HIGH_RISK_THRESHOLD."""
        return await self._scalars(
            select(AuditLog)
            .where(
                or_(
                    AuditLog.severity.in_([AuditSeverity.CRITICAL.value, AuditSeverity.HIGH.value]),
                    AuditLog.risk_score >= HIGH_RISK_THRESHOLD,
                )
            )
            .where(AuditLog.archived.is_(False))
            .order_by(AuditLog.risk_score.desc(), AuditLog.timestamp.desc(), AuditLog.id.desc())
            .limit(limit)
        )

    async def get_audit_report(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        **filters: Any,
    ) -> list[dict]:
        """Counts per (event_category, success) with the number of distinct usernames."""
        count = func.count(AuditLog.id)
        statement = (
            select(
                AuditLog.event_category,
                AuditLog.success,
                count.label("count"),
                func.count(distinct(AuditLog.username)).label("unique_users"),
            )
            .where(*_filter_clauses(start, end, **filters))
            .group_by(AuditLog.event_category, AuditLog.success)
            .order_by(count.desc(), AuditLog.event_category.asc())
        )
        try:
            result = await self.db.execute(statement)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to build audit report: {e}") from e
        return [
            {
                "event_category": row.event_category,
                "success": bool(row.success),
                "count": row.count,
                "unique_users": row.unique_users,
            }
            for row in result.all()
        ]

    async def find_archivable(self, as_of: Optional[datetime] = None, limit: int = 500) -> list[AuditLog]:
        """Entries whose retention date has passed and that are not archived yet."""
        as_of = as_of or datetime.now(timezone.utc)
        return await self._scalars(
            select(AuditLog)
            .where(AuditLog.retention_date <= to_utc(as_of))
            .where(AuditLog.archived.is_(False))
            .order_by(AuditLog.retention_date.asc(), AuditLog.id.asc())
            .limit(limit)
        )
