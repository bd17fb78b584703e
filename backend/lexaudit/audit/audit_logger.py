"""
Audit Logger Service

Call-site entry points into the audit chain for the platform's feature
modules (authentication, RBAC, backups, security alerts, sessions, IP
whitelisting).

The writer itself never swallows errors. This module is where the failure
policy lives, controlled by AUDIT_WRITE_FAILURE_POLICY:
- "log" (default): a failed audit write is logged to the out-of-band
  structured log and None is returned, so an audit outage does not take down
  authentication or other primary operations
- "raise": the error is re-raised and the originating operation fails
"""
import logging
from typing import Any, Optional

from lexaudit.audit.context import AuditContext, get_audit_context
from lexaudit.audit.errors import AuditError
from lexaudit.audit.writer import AuditLogWriter
from lexaudit.core.config import settings
from lexaudit.models.audit_log import AuditEventCategory, AuditEventType, AuditSeverity
from lexaudit.schemas.audit import AuditLogEntry
from lexaudit.services.logging import audit_event_logger

logger = logging.getLogger(__name__)


_writer: Optional[AuditLogWriter] = None


def get_audit_writer() -> AuditLogWriter:
    """
    Process-wide writer shared by every call site.

    Also used as a FastAPI dependency.
    """
    global _writer
    if _writer is None:
        _writer = AuditLogWriter()
    return _writer


def with_request_context(attributes: dict) -> dict:
    """
    Fill missing network fields from the current request's AuditContext.

    Outside a request (jobs, startup) the system context is used, which
    reports the loopback address.
    """
    context = get_audit_context() or AuditContext.create_empty()

    enriched = dict(attributes)
    if not enriched.get("ip_address") and context.ip_address:
        enriched["ip_address"] = context.ip_address
    if not enriched.get("user_agent") and context.user_agent:
        enriched["user_agent"] = context.user_agent
    if not enriched.get("session_id") and context.session_id:
        enriched["session_id"] = context.session_id
    return enriched


async def log_audit_event(
    writer: Optional[AuditLogWriter] = None,
    *,
    fail_closed: Optional[bool] = None,
    **attributes: Any,
) -> Optional[AuditLogEntry]:
    """
    Record an audit event and apply the write-failure policy.

    Args:
        writer: Writer to use, defaults to the process-wide writer
        fail_closed: Override AUDIT_WRITE_FAILURE_POLICY for this call site
        **attributes: AuditEventCreate fields; network fields missing here
            are taken from the request context

    Returns:
        The stored entry, or None when the write failed under the "log" policy
    """
    writer = writer or get_audit_writer()
    raise_on_failure = settings.audit_fail_closed if fail_closed is None else fail_closed

    try:
        return await writer.record(with_request_context(attributes))
    except AuditError as e:
        event_type = attributes.get("event_type")
        audit_event_logger.write_failed(
            event_type=str(getattr(event_type, "value", event_type)),
            action=str(attributes.get("action")),
            error=str(e),
        )
        logger.error(
            f"Failed to record audit event {event_type} "
            f"action={attributes.get('action')}: {e}",
            exc_info=True
        )
        if raise_on_failure:
            raise
        return None


async def log_login_attempt(
    writer: Optional[AuditLogWriter] = None,
    *,
    username: str,
    success: bool,
    user_id: Optional[str] = None,
    user_role: Optional[str] = None,
    failure_reason: Optional[str] = None,
    **attributes: Any,
) -> Optional[AuditLogEntry]:
    """Record a login attempt; failed attempts are Medium severity."""
    return await log_audit_event(
        writer,
        event_type=AuditEventType.LOGIN if success else AuditEventType.LOGIN_FAILED,
        event_category=AuditEventCategory.AUTHENTICATION,
        user_id=user_id,
        username=username,
        user_role=user_role,
        action="User login" if success else "Failed login attempt",
        success=success,
        error_message=None if success else failure_reason,
        severity=AuditSeverity.LOW if success else AuditSeverity.MEDIUM,
        **attributes,
    )


async def log_data_access(
    writer: Optional[AuditLogWriter] = None,
    *,
    user_id: Optional[str],
    username: Optional[str],
    resource: str,
    resource_id: Optional[str] = None,
    action: str = "Read",
    **attributes: Any,
) -> Optional[AuditLogEntry]:
    """Record read access to a case file, document or other resource."""
    attributes.setdefault("description", f"User {username} accessed {resource} {resource_id or ''}".strip())
    return await log_audit_event(
        writer,
        event_type=AuditEventType.DATA_ACCESS,
        event_category=AuditEventCategory.DATA_ACCESS,
        user_id=user_id,
        username=username,
        resource=resource,
        resource_id=resource_id,
        action=action,
        **attributes,
    )


async def log_security_event(
    writer: Optional[AuditLogWriter] = None,
    **attributes: Any,
) -> Optional[AuditLogEntry]:
    """Record a security event; defaults to a High severity Security Alert in the Security category."""
    attributes.setdefault("event_type", AuditEventType.SECURITY_ALERT)
    attributes.setdefault("event_category", AuditEventCategory.SECURITY)
    attributes.setdefault("severity", AuditSeverity.HIGH)
    return await log_audit_event(writer, **attributes)
