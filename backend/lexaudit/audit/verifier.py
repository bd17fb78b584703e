"""
Audit Log Integrity Verifier

Replays a time range of the audit chain and recomputes every checksum.

Rules:
- The running previous checksum is seeded from the STORED previous_checksum
  of the first entry in the range; history before the range is not replayed
- An entry is valid when its recomputed checksum equals its stored checksum
  AND its stored previous_checksum equals the running previous checksum
- After each entry the running value advances to that entry's STORED
  checksum, not the recomputed one: a single tampered entry is reported once
  and the entries after it still verify against what is stored

Verification is read-only. Invalid entries are reported as data and logged;
nothing is raised for them.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from lexaudit.audit.checksum import checksum_fields, compute_checksum
from lexaudit.audit.repository import AuditLogRepository, AuditRange
from lexaudit.models.audit_log import AuditLog
from lexaudit.schemas.audit import IntegritySummary
from lexaudit.services.logging import audit_event_logger


@dataclass(frozen=True)
class IntegrityCheckResult:
    entry: AuditLog
    expected_checksum: str
    actual_checksum: str
    valid: bool


class VerificationRun:
    """
    Per-entry verification results for one range, in chain order.

    Finite and restartable: every iteration re-reads the range.
    """

    def __init__(self, entries: AuditRange, start: datetime, end: datetime):
        self.entries = entries
        self.start = start
        self.end = end

    def __aiter__(self) -> AsyncIterator[IntegrityCheckResult]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[IntegrityCheckResult]:
        previous_checksum = None
        total = 0
        invalid = 0

        async for entry in self.entries:
            if previous_checksum is None:
                previous_checksum = entry.previous_checksum

            expected = compute_checksum(checksum_fields(entry), previous_checksum)
            valid = expected == entry.checksum and entry.previous_checksum == previous_checksum

            total += 1
            if not valid:
                invalid += 1
                audit_event_logger.integrity_violation(
                    log_id=entry.log_id,
                    timestamp=entry.timestamp,
                    expected_checksum=expected,
                    actual_checksum=entry.checksum,
                )

            yield IntegrityCheckResult(
                entry=entry,
                expected_checksum=expected,
                actual_checksum=entry.checksum,
                valid=valid,
            )

            previous_checksum = entry.checksum

        audit_event_logger.integrity_check_completed(self.start, self.end, total, invalid)

    async def all(self) -> list[IntegrityCheckResult]:
        return [result async for result in self]


class AuditIntegrityVerifier:
    def __init__(self, db: AsyncSession):
        self.repository = AuditLogRepository(db)

    def verify(self, start: datetime, end: datetime) -> VerificationRun:
        """Verify entries with start <= timestamp <= end."""
        return VerificationRun(self.repository.query_range(start, end), start, end)


def summarize(results: Iterable[IntegrityCheckResult]) -> IntegritySummary:
    """Aggregate counts; an empty range counts as fully intact."""
    total = 0
    valid = 0
    for result in results:
        total += 1
        if result.valid:
            valid += 1
    percentage = round(valid / total * 100, 2) if total else 100.0
    return IntegritySummary(
        total_logs=total,
        valid_logs=valid,
        invalid_logs=total - valid,
        integrity_percentage=percentage,
    )
