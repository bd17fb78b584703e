"""
Structured Logging Service

Provides structured logging for audit log lifecycle events:
- Audit entry recorded
- Chain conflict retried / audit write failed
- Integrity check completed
- Integrity violation detected

Each log entry includes:
- event
- severity (INFO/WARN/ERROR)
- entity_type (audit_entry, audit_chain)
- log_id (if applicable)
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Any
from enum import Enum


class LogSeverity(str, Enum):
    """Log severity levels."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class LogEntityType(str, Enum):
    """Entity types for structured logging."""
    AUDIT_ENTRY = "audit_entry"
    AUDIT_CHAIN = "audit_chain"


class StructuredLogger:
    """
    Structured logging service for audit events.

    Logs are emitted as single-line JSON suitable for shipping to an
    out-of-band log store, which is where failed audit writes end up.
    """

    def __init__(self, logger_name: str = "lexaudit.audit"):
        self.logger = logging.getLogger(logger_name)
        self._ensure_handler()

    def _ensure_handler(self):
        """Ensure logger has a proper handler configured."""
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

    def _serialize(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, Enum):
            return value.value
        return value

    def _create_log_entry(
        self,
        event: str,
        severity: LogSeverity,
        entity_type: LogEntityType,
        log_id: Optional[str] = None,
        message: Optional[str] = None,
        **extra
    ) -> dict:
        """Create a structured log entry."""
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "severity": severity.value,
            "entity_type": entity_type.value,
        }

        if log_id:
            entry["log_id"] = log_id
        if message:
            entry["message"] = message

        for key, value in extra.items():
            entry[key] = self._serialize(value)

        return entry

    def _log(self, entry: dict, severity: LogSeverity):
        """Emit the log entry at the appropriate level."""
        log_str = json.dumps(entry, default=str)
        if severity == LogSeverity.ERROR:
            self.logger.error(log_str)
        elif severity == LogSeverity.WARN:
            self.logger.warning(log_str)
        else:
            self.logger.info(log_str)

    # Write path
    def entry_recorded(
        self,
        log_id: str,
        event_type: str,
        checksum: str,
        previous_checksum: str,
        attempt: int = 1,
    ):
        """Log a successfully chained audit entry."""
        entry = self._create_log_entry(
            event="audit.entry_recorded",
            severity=LogSeverity.INFO,
            entity_type=LogEntityType.AUDIT_ENTRY,
            log_id=log_id,
            event_type=event_type,
            checksum=checksum,
            previous_checksum=previous_checksum or None,
            attempt=attempt,
        )
        self._log(entry, LogSeverity.INFO)

    def chain_conflict(self, previous_checksum: str, attempt: int, max_attempts: int):
        """Log a storage-level fork rejection that will be retried."""
        entry = self._create_log_entry(
            event="audit.chain_conflict",
            severity=LogSeverity.WARN,
            entity_type=LogEntityType.AUDIT_CHAIN,
            message="Chain tail moved during append, retrying",
            previous_checksum=previous_checksum or None,
            attempt=attempt,
            max_attempts=max_attempts,
        )
        self._log(entry, LogSeverity.WARN)

    def write_failed(self, event_type: str, action: str, error: str):
        """Log an audit write that could not be persisted."""
        entry = self._create_log_entry(
            event="audit.write_failed",
            severity=LogSeverity.ERROR,
            entity_type=LogEntityType.AUDIT_ENTRY,
            message=f"Audit write failed: {error}",
            event_type=event_type,
            action=action,
            error=error,
        )
        self._log(entry, LogSeverity.ERROR)

    # Verification
    def integrity_violation(
        self,
        log_id: str,
        timestamp: datetime,
        expected_checksum: str,
        actual_checksum: str,
    ):
        """Log a single entry that failed verification."""
        entry = self._create_log_entry(
            event="audit.integrity_violation",
            severity=LogSeverity.ERROR,
            entity_type=LogEntityType.AUDIT_ENTRY,
            log_id=log_id,
            message="Audit entry checksum mismatch",
            entry_timestamp=timestamp,
            expected_checksum=expected_checksum,
            actual_checksum=actual_checksum,
        )
        self._log(entry, LogSeverity.ERROR)

    def integrity_check_completed(
        self,
        start: datetime,
        end: datetime,
        total: int,
        invalid: int,
    ):
        """Log the outcome of a verification run."""
        severity = LogSeverity.WARN if invalid else LogSeverity.INFO
        entry = self._create_log_entry(
            event="audit.integrity_check_completed",
            severity=severity,
            entity_type=LogEntityType.AUDIT_CHAIN,
            range_start=start,
            range_end=end,
            total_logs=total,
            invalid_logs=invalid,
        )
        self._log(entry, severity)


# Global logger instance
audit_event_logger = StructuredLogger()
