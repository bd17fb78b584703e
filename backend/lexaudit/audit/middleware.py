"""
Audit Middleware

This middleware captures request context and stores it in a context variable
for use by the audit logging system.
"""
import logging
from typing import Optional
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from lexaudit.audit.context import AuditContext, set_audit_context, clear_audit_context

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> Optional[str]:
    """
    Resolve the client IP address.

    Uses the first hop of X-Forwarded-For when the service sits behind a
    proxy, then X-Real-IP, then the socket peer address.
    """
    forwarded_for = request.headers.get("x-forwarded-for", "")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host
    return None


class AuditMiddleware(BaseHTTPMiddleware):
    """
    Middleware to capture request context for audit logging.

    This middleware extracts:
    - request_id (generated UUID)
    - ip_address (see get_client_ip)
    - user_agent (from the User-Agent header)
    - session_id (from the X-Session-Id header if present)

    The context is stored in a context variable and cleared after request processing.
    """

    async def dispatch(self, request: Request, call_next):
        context = AuditContext(
            request_id=uuid4(),
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            session_id=request.headers.get("x-session-id"),
        )
        set_audit_context(context)

        try:
            response = await call_next(request)
            response.headers["X-Request-Id"] = str(context.request_id)
            return response
        finally:
            # Always clear context after request
            clear_audit_context()
