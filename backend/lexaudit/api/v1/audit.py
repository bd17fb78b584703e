"""
Security Audit Trail API Endpoints

Compliance and reporting surface of the hash-chained audit log:
- GET    /audit                   - Filtered, paginated audit history
- POST   /audit                   - Record an audit event
- GET    /audit/report            - Aggregate counts per category and outcome
- GET    /audit/archivable        - Entries past their retention date
- GET    /audit/suspicious-activity - Failed or blocked events from one IP address
- GET    /audit/high-risk         - High severity or high risk score entries
- GET    /audit/{log_id}          - Single entry
- PUT/PATCH/DELETE /audit/{log_id} - Always rejected (entries are immutable)
- POST   /audit/verify-integrity  - Replay and verify a time range of the chain
"""
import logging
import math
from datetime import datetime
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from lexaudit.audit.audit_logger import get_audit_writer
from lexaudit.audit.repository import AuditLogRepository
from lexaudit.audit.verifier import AuditIntegrityVerifier, summarize
from lexaudit.audit.writer import AuditLogWriter
from lexaudit.core.database import get_db
from lexaudit.models.audit_log import AuditEventCategory, AuditEventType, AuditSeverity
from lexaudit.schemas.audit import (
    AuditEventCreate,
    AuditLogEntry,
    AuditLogListResponse,
    AuditReportResponse,
    AuditReportRow,
    IntegrityCheckResultResponse,
    VerifyIntegrityRequest,
    VerifyIntegrityResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/audit", response_model=AuditLogListResponse)
async def list_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    event_type: Optional[AuditEventType] = Query(None),
    event_category: Optional[AuditEventCategory] = Query(None),
    user_id: Optional[str] = Query(None),
    username: Optional[str] = Query(None),
    resource: Optional[str] = Query(None),
    ip_address: Optional[str] = Query(None),
    success: Optional[bool] = Query(None),
    severity: Optional[AuditSeverity] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
):
    """
    Get audit history, newest first.

    Filtering is a plain pass-through to the repository; the hash chain is
    not involved.
    """
    repository = AuditLogRepository(db)
    entries, total = await repository.search(
        page=page,
        limit=limit,
        start=start_date,
        end=end_date,
        event_type=event_type,
        event_category=event_category,
        user_id=user_id,
        username=username,
        resource=resource,
        ip_address=ip_address,
        success=success,
        severity=severity,
    )

    return AuditLogListResponse(
        entries=[AuditLogEntry.model_validate(entry) for entry in entries],
        total_count=total,
        page=page,
        page_size=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.post("/audit", response_model=AuditLogEntry, status_code=status.HTTP_201_CREATED)
async def create_audit_log(
    event: AuditEventCreate,
    writer: Annotated[AuditLogWriter, Depends(get_audit_writer)],
):
    """
    Record an audit event.

    Errors are surfaced to the caller (422 / 503); this endpoint never drops
    an event silently.
    """
    return await writer.record(event)


@router.get("/audit/report", response_model=AuditReportResponse)
async def get_audit_report(
    db: Annotated[AsyncSession, Depends(get_db)],
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    event_type: Optional[AuditEventType] = Query(None),
    username: Optional[str] = Query(None),
    severity: Optional[AuditSeverity] = Query(None),
):
    """Count entries per event category and outcome, with unique users per group."""
    repository = AuditLogRepository(db)
    rows = await repository.get_audit_report(
        start_date,
        end_date,
        event_type=event_type,
        username=username,
        severity=severity,
    )
    return AuditReportResponse(
        start_date=start_date,
        end_date=end_date,
        rows=[AuditReportRow(**row) for row in rows],
    )


@router.get("/audit/archivable", response_model=List[AuditLogEntry])
async def list_archivable_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    as_of: Optional[datetime] = Query(None, description="Defaults to now"),
    limit: int = Query(100, ge=1, le=500),
):
    """Entries whose retention date has passed and that are not archived yet."""
    repository = AuditLogRepository(db)
    entries = await repository.find_archivable(as_of, limit=limit)
    return [AuditLogEntry.model_validate(entry) for entry in entries]


@router.get("/audit/suspicious-activity", response_model=List[AuditLogEntry])
async def list_suspicious_activity(
    db: Annotated[AsyncSession, Depends(get_db)],
    ip_address: str = Query(..., min_length=1),
    hours: int = Query(24, ge=1, le=24 * 90),
):
    """Failed or blocked events from one IP address, for IP whitelisting and monitoring."""
    repository = AuditLogRepository(db)
    entries = await repository.get_suspicious_activity(ip_address, hours=hours)
    return [AuditLogEntry.model_validate(entry) for entry in entries]


@router.get("/audit/high-risk", response_model=List[AuditLogEntry])
async def list_high_risk_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: int = Query(50, ge=1, le=500),
):
    """High and Critical severity entries plus entries with a high risk score, riskiest first."""
    repository = AuditLogRepository(db)
    entries = await repository.find_high_risk(limit=limit)
    return [AuditLogEntry.model_validate(entry) for entry in entries]


@router.get("/audit/{log_id}", response_model=AuditLogEntry)
async def get_audit_log(
    log_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    repository = AuditLogRepository(db)
    entry = await repository.get_by_log_id(log_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Audit log entry not found")
    return AuditLogEntry.model_validate(entry)


@router.api_route("/audit/{log_id}", methods=["PUT", "PATCH"])
async def update_audit_log(
    log_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await AuditLogRepository(db).update(log_id)


@router.delete("/audit/{log_id}")
async def delete_audit_log(
    log_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await AuditLogRepository(db).delete(log_id)


@router.post("/audit/verify-integrity", response_model=VerifyIntegrityResponse)
async def verify_audit_integrity(
    request: VerifyIntegrityRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Verify the hash chain between start_date and end_date (inclusive).

    Only the requested window is replayed; its first entry is trusted as the
    anchor. Per-entry results are returned next to the aggregate summary.
    """
    verifier = AuditIntegrityVerifier(db)
    results = await verifier.verify(request.start_date, request.end_date).all()
    summary = summarize(results)

    if summary.invalid_logs:
        logger.warning(
            f"Audit integrity check {request.start_date.isoformat()} - "
            f"{request.end_date.isoformat()}: {summary.invalid_logs}/{summary.total_logs} invalid"
        )

    return VerifyIntegrityResponse(
        summary=summary,
        results=[
            IntegrityCheckResultResponse(
                log_id=result.entry.log_id,
                timestamp=result.entry.timestamp,
                expected_checksum=result.expected_checksum,
                actual_checksum=result.actual_checksum,
                valid=result.valid,
            )
            for result in results
        ],
    )
