"""
Audit Log Model

This module defines the AuditLog model: the append-only, hash-chained record of
security-relevant events across the practice platform (logins, role changes,
data mutations, backups, alerts).

The audit_log table was created by migration 001_audit_log_chain.
"""
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from lexaudit.core.database import Base, BigIntegerPK


class AuditEventType(str, enum.Enum):
    """Closed set of auditable event types."""
    LOGIN = "Login"
    LOGOUT = "Logout"
    LOGIN_FAILED = "Login Failed"
    PASSWORD_CHANGE = "Password Change"
    PASSWORD_RESET = "Password Reset"
    USER_CREATED = "User Created"
    USER_UPDATED = "User Updated"
    USER_DELETED = "User Deleted"
    USER_SUSPENDED = "User Suspended"
    ROLE_ASSIGNED = "Role Assigned"
    ROLE_REVOKED = "Role Revoked"
    PERMISSION_CHANGED = "Permission Changed"
    DATA_ACCESS = "Data Access"
    DATA_CREATE = "Data Create"
    DATA_UPDATE = "Data Update"
    DATA_DELETE = "Data Delete"
    FILE_UPLOAD = "File Upload"
    FILE_DOWNLOAD = "File Download"
    FILE_DELETE = "File Delete"
    SECURITY_ALERT = "Security Alert"
    IP_BLOCK = "IP Block"
    SESSION_TERMINATED = "Session Terminated"
    MFA_ENABLED = "MFA Enabled"
    MFA_DISABLED = "MFA Disabled"
    BACKUP_CREATED = "Backup Created"
    BACKUP_RESTORED = "Backup Restored"
    CONFIGURATION_CHANGE = "Configuration Change"
    SYSTEM_EVENT = "System Event"
    API_ACCESS = "API Access"
    OTHER = "Other"


class AuditEventCategory(str, enum.Enum):
    """Coarse grouping of event types."""
    AUTHENTICATION = "Authentication"
    AUTHORIZATION = "Authorization"
    DATA_ACCESS = "Data Access"
    CONFIGURATION = "Configuration"
    SECURITY = "Security"
    SYSTEM = "System"


class AuditSeverity(str, enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class AuditLog(Base):
    """
    Audit log model for the tamper-evident security trail.

    Every row carries the SHA-256 checksum of its canonical fields chained to
    the checksum of the row written immediately before it.

    Security features:
    - Hash chain (checksum + previous_checksum) makes retroactive edits detectable
    - Unique previous_checksum: two rows can never claim the same predecessor
    - Immutable records (repository and session guard reject updates/deletes)
    - retention_date fixed at creation from the configured retention policy
    """
    __tablename__ = "audit_log"

    # Insertion order; breaks ties between equal timestamps
    id: Mapped[int] = mapped_column(
        BigIntegerPK,
        primary_key=True,
        autoincrement=True,
    )

    log_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Public identifier, LOG-<epoch millis>-<random>"
    )

    # Event classification
    event_type: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    event_category: Mapped[str] = mapped_column(String(40), nullable=False, index=True)

    # Actor (all null for system-initiated events)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    user_role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # What happened
    action: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resource: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    method: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    endpoint: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Outcome
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Change tracking (sanitized, never part of the checksum)
    changes_before: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    changes_after: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    changed_fields: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)

    # Network context
    ip_address: Mapped[str] = mapped_column(
        String(45),
        nullable=False,
        index=True,
        comment="IP address of the request (IPv4 or IPv6)"
    )
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    device_info: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    geo_country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    geo_region: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    geo_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    severity: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AuditSeverity.LOW.value,
        index=True,
    )

    # Risk assessment, fixed at creation (see lexaudit.audit.risk)
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    risk_factors: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)

    extra: Mapped[Optional[dict]] = mapped_column("metadata", JSONB, nullable=True)

    # Chain
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
        comment="Event time; defines chain order"
    )
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_checksum: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Checksum of the preceding entry, empty for chain genesis"
    )

    # Retention
    retention_policy: Mapped[str] = mapped_column(String(32), nullable=False)
    retention_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("previous_checksum", name="uq_audit_log_previous_checksum"),
        Index("ix_audit_log_timestamp_id", "timestamp", "id"),
        Index("ix_audit_log_event_type_timestamp", "event_type", "timestamp"),
        Index("ix_audit_log_user_id_timestamp", "user_id", "timestamp"),
        Index("ix_audit_log_resource", "resource", "resource_id", "timestamp"),
        Index("ix_audit_log_retention_date", "retention_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLog(log_id={self.log_id}, "
            f"event_type={self.event_type}, "
            f"action={self.action}, "
            f"timestamp={self.timestamp})>"
        )
