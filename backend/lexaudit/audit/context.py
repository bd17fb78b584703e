"""
Request Context Module

This module provides a context variable to store request-scoped network
information (request_id, ip_address, user_agent, session_id) for audit
entries recorded while handling the request.

Uses Python's contextvars to provide thread-safe, async-safe request context.
"""
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional
from uuid import UUID, uuid4


SYSTEM_IP_ADDRESS = "127.0.0.1"


@dataclass
class AuditContext:
    """
    Request context for audit logging.

    This context is populated by middleware and used by the audit logging
    helpers when a call site does not pass network context explicitly.
    """
    request_id: UUID
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None

    @classmethod
    def create_empty(cls) -> "AuditContext":
        """Create an audit context for system operations (jobs, startup)."""
        return cls(
            request_id=uuid4(),
            ip_address=SYSTEM_IP_ADDRESS,
            user_agent=None,
            session_id=None,
        )


# Context variable to store audit context per request
audit_context_var: ContextVar[Optional[AuditContext]] = ContextVar(
    "audit_context",
    default=None
)


def get_audit_context() -> Optional[AuditContext]:
    """
    Get the current audit context.

    Returns:
        The current AuditContext if set, None otherwise
    """
    return audit_context_var.get()


def set_audit_context(context: AuditContext) -> None:
    """
    Set the audit context for the current request.

    Args:
        context: The AuditContext to set
    """
    audit_context_var.set(context)


def clear_audit_context() -> None:
    """
    Clear the audit context.

    This is typically called at the end of request processing.
    """
    audit_context_var.set(None)
