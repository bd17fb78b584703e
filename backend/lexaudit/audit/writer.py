"""
Audit Log Writer

Appends new entries to the hash chain.

For every event the writer:
1. Validates the event attributes (nothing is read or written on failure)
2. Reads the chain tail
3. Assigns a timestamp strictly after the tail's timestamp
4. Computes the checksum chained to the tail's checksum
5. Computes the retention date and risk score
6. Appends and commits

Steps 2-6 run under the writer's lock, in a session of their own, and commit
before the lock is released; a concurrent record() call therefore always sees
the entry written before it. Writers in other processes are kept off a forked
chain by the unique previous_checksum constraint: the losing append raises
ChainConflict and the whole sequence is retried.
"""
import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lexaudit.audit.checksum import GENESIS_CHECKSUM, checksum_fields, compute_checksum, to_utc
from lexaudit.audit.errors import AuditValidationError, ChainConflict, StorageError
from lexaudit.audit.repository import AuditLogRepository
from lexaudit.audit.retention import compute_expiration, resolve_policy_name
from lexaudit.audit.risk import compute_risk_score
from lexaudit.audit.sanitize import sanitize_payload
from lexaudit.core.config import settings
from lexaudit.core.database import async_session_maker
from lexaudit.models.audit_log import AuditLog
from lexaudit.schemas.audit import AuditEventCreate, AuditLogEntry
from lexaudit.services.logging import audit_event_logger

logger = logging.getLogger(__name__)


def generate_log_id(timestamp: datetime) -> str:
    return f"LOG-{int(timestamp.timestamp() * 1000)}-{secrets.token_hex(5)}"


def next_timestamp(latest: Optional[AuditLog], now: Optional[datetime] = None) -> datetime:
    """Current UTC time, bumped past the chain tail when the clock has not advanced."""
    now = to_utc(now or datetime.now(timezone.utc))
    if latest is not None:
        tail = to_utc(latest.timestamp)
        if now <= tail:
            now = tail + timedelta(microseconds=1)
    return now


class AuditLogWriter:
    """
    Single serialization point for audit log writes.

    One writer instance should be shared by every call site of a process;
    see lexaudit.audit.audit_logger.get_audit_writer().
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        retention_policy: Optional[str] = None,
        max_retries: Optional[int] = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.retention_policy = retention_policy
        self.max_retries = settings.AUDIT_CHAIN_MAX_RETRIES if max_retries is None else max_retries
        self._lock = asyncio.Lock()

    def _validate(self, event: Union[AuditEventCreate, Mapping[str, Any]]) -> AuditEventCreate:
        if isinstance(event, AuditEventCreate):
            return event
        if not isinstance(event, Mapping):
            raise AuditValidationError(f"Unsupported audit event type: {type(event).__name__}")
        try:
            return AuditEventCreate.model_validate(dict(event))
        except ValidationError as e:
            raise AuditValidationError(f"Invalid audit event: {e}") from e

    async def record(self, event: Union[AuditEventCreate, Mapping[str, Any]]) -> AuditLogEntry:
        """
        Append one event to the audit chain.

        Args:
            event: AuditEventCreate or a mapping with the same fields

        Returns:
            Immutable copy of the stored entry

        Raises:
            AuditValidationError: the event attributes are malformed
            StorageError: the entry could not be persisted
        """
        event = self._validate(event)
        policy_name = resolve_policy_name(event.retention_policy or self.retention_policy)

        max_attempts = self.max_retries + 1
        conflict: Optional[ChainConflict] = None
        for attempt in range(1, max_attempts + 1):
            async with self._lock:
                try:
                    return await self._append(event, policy_name, attempt)
                except ChainConflict as e:
                    conflict = e
                    audit_event_logger.chain_conflict(e.previous_checksum, attempt, max_attempts)

        raise StorageError(
            f"Audit chain append failed after {max_attempts} attempts: {conflict}"
        ) from conflict

    async def _append(self, event: AuditEventCreate, policy_name: str, attempt: int) -> AuditLogEntry:
        async with self.session_factory() as session:
            repository = AuditLogRepository(session)

            latest = await repository.find_latest()
            previous_checksum = latest.checksum if latest is not None else GENESIS_CHECKSUM
            timestamp = next_timestamp(latest)

            entry = AuditLog(
                log_id=generate_log_id(timestamp),
                event_type=event.event_type.value,
                event_category=event.event_category.value,
                user_id=event.user_id,
                username=event.username,
                user_role=event.user_role,
                action=event.action,
                description=event.description,
                resource=event.resource,
                resource_id=event.resource_id,
                method=event.method,
                endpoint=event.endpoint,
                success=event.success,
                status_code=event.status_code,
                error_message=event.error_message,
                changes_before=sanitize_payload(event.changes_before),
                changes_after=sanitize_payload(event.changes_after),
                changed_fields=list(event.changed_fields) if event.changed_fields else None,
                ip_address=event.ip_address,
                user_agent=event.user_agent,
                device_info=event.device_info,
                geo_country=event.geo_country,
                geo_region=event.geo_region,
                geo_city=event.geo_city,
                session_id=event.session_id,
                severity=event.severity.value,
                risk_score=compute_risk_score(
                    event.event_type.value,
                    event.severity.value,
                    event.success,
                    event.risk_factors,
                ),
                risk_factors=list(event.risk_factors) if event.risk_factors else None,
                extra=sanitize_payload(event.extra),
                timestamp=timestamp,
                previous_checksum=previous_checksum,
                retention_policy=policy_name,
                retention_date=compute_expiration(timestamp, policy_name),
                archived=False,
            )
            entry.checksum = compute_checksum(checksum_fields(entry), previous_checksum)

            await repository.append(entry)
            stored = AuditLogEntry.model_validate(entry)

            try:
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise StorageError(f"Failed to commit audit entry {entry.log_id}: {e}") from e

        audit_event_logger.entry_recorded(
            log_id=stored.log_id,
            event_type=stored.event_type,
            checksum=stored.checksum,
            previous_checksum=stored.previous_checksum,
            attempt=attempt,
        )
        return stored
