"""
Audit Log Schemas

Pydantic schemas for recording, querying and verifying the hash-chained
audit trail.
"""
from datetime import datetime
from typing import Literal, Optional, List

from pydantic import BaseModel, Field, model_validator

from lexaudit.audit.checksum import to_utc
from lexaudit.models.audit_log import AuditEventType, AuditEventCategory, AuditSeverity


HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]


class AuditEventCreate(BaseModel):
    """
    Attributes a collaborator reports for a new audit event.

    log_id, timestamp, checksum, previous_checksum, retention_date and
    archived are assigned by the writer and cannot be supplied.
    """
    event_type: AuditEventType
    event_category: AuditEventCategory

    # Actor (omit for system-initiated events)
    user_id: Optional[str] = Field(default=None, max_length=64)
    username: Optional[str] = Field(default=None, max_length=255)
    user_role: Optional[str] = Field(default=None, max_length=50)

    action: str = Field(min_length=1)
    description: Optional[str] = None
    resource: Optional[str] = Field(default=None, max_length=255)
    resource_id: Optional[str] = Field(default=None, max_length=255)
    method: Optional[HttpMethod] = None
    endpoint: Optional[str] = Field(default=None, max_length=500)

    success: bool = True
    status_code: Optional[int] = None
    error_message: Optional[str] = None

    changes_before: Optional[dict] = None
    changes_after: Optional[dict] = None
    changed_fields: Optional[List[str]] = None

    ip_address: str = Field(min_length=1, max_length=45)
    user_agent: Optional[str] = Field(default=None, max_length=500)
    device_info: Optional[str] = Field(default=None, max_length=255)
    geo_country: Optional[str] = Field(default=None, max_length=100)
    geo_region: Optional[str] = Field(default=None, max_length=100)
    geo_city: Optional[str] = Field(default=None, max_length=100)
    session_id: Optional[str] = Field(default=None, max_length=255)

    severity: AuditSeverity = AuditSeverity.LOW
    # Free-form indicators (e.g. "tor_exit_node"), each raises the risk score
    risk_factors: Optional[List[str]] = None
    extra: Optional[dict] = None

    # Named retention policy; defaults to AUDIT_RETENTION_POLICY
    retention_policy: Optional[str] = None

    model_config = {"str_strip_whitespace": True, "extra": "forbid"}


class AuditLogEntry(BaseModel):
    """Immutable copy of a persisted audit entry."""
    log_id: str
    event_type: str
    event_category: str
    user_id: Optional[str] = None
    username: Optional[str] = None
    user_role: Optional[str] = None
    action: str
    description: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    method: Optional[str] = None
    endpoint: Optional[str] = None
    success: bool
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    changes_before: Optional[dict] = None
    changes_after: Optional[dict] = None
    changed_fields: Optional[List[str]] = None
    ip_address: str
    user_agent: Optional[str] = None
    device_info: Optional[str] = None
    geo_country: Optional[str] = None
    geo_region: Optional[str] = None
    geo_city: Optional[str] = None
    session_id: Optional[str] = None
    severity: str
    risk_score: int
    risk_factors: Optional[List[str]] = None
    extra: Optional[dict] = None
    timestamp: datetime
    checksum: str
    previous_checksum: str
    retention_policy: str
    retention_date: datetime
    archived: bool

    model_config = {"from_attributes": True, "frozen": True}


class AuditLogListResponse(BaseModel):
    """Schema for audit log list response."""
    entries: List[AuditLogEntry]
    total_count: int
    page: int
    page_size: int
    pages: int


class VerifyIntegrityRequest(BaseModel):
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_range(self) -> "VerifyIntegrityRequest":
        if to_utc(self.end_date) < to_utc(self.start_date):
            raise ValueError("end_date must not be before start_date")
        return self


class IntegrityCheckResultResponse(BaseModel):
    log_id: str
    timestamp: datetime
    expected_checksum: str
    actual_checksum: str
    valid: bool


class IntegritySummary(BaseModel):
    total_logs: int
    valid_logs: int
    invalid_logs: int
    integrity_percentage: float


class VerifyIntegrityResponse(BaseModel):
    summary: IntegritySummary
    results: List[IntegrityCheckResultResponse]


class AuditReportRow(BaseModel):
    """One group of the aggregate audit report."""
    event_category: str
    success: bool
    count: int
    unique_users: int


class AuditReportResponse(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    rows: List[AuditReportRow]
