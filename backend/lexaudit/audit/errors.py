"""
Audit Log Errors

Exceptions raised by the audit log core. None of them are caught inside the
core; call sites decide whether a failed audit write aborts their operation
(see lexaudit.audit.audit_logger).

Integrity violations found by the verifier are reported as data
(IntegrityCheckResult.valid == False), never raised.
"""


class AuditError(Exception):
    """Base exception for audit log operations."""
    pass


class AuditValidationError(AuditError):
    """Event attributes are malformed; nothing was written."""
    pass


class StorageError(AuditError):
    """The store rejected an append or a read; the entry was not written."""
    pass


class ImmutabilityViolation(AuditError):
    """An update or delete of a persisted audit entry was attempted."""

    def __init__(self, message: str = "Audit log entries are immutable", log_id: str | None = None):
        self.log_id = log_id
        if log_id:
            message = f"{message} (log_id={log_id})"
        super().__init__(message)


class ChainConflict(AuditError):
    """The chain tail moved between reading it and appending to it."""

    def __init__(self, previous_checksum: str):
        self.previous_checksum = previous_checksum
        super().__init__(
            f"Chain predecessor {previous_checksum or '<genesis>'} "
            f"was already claimed by another entry"
        )
