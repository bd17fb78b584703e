"""
Audit Payload Sanitization

Change payloads (changes_before / changes_after / extra) come from arbitrary
feature modules. Before they are stored they are:
- stripped of credentials and similar secrets
- truncated when they carry large text blobs
- converted to JSON-serializable values
"""
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from lexaudit.core.config import settings


# Sensitive keys that should be redacted from audit logs
SENSITIVE_KEYS = {
    # Authentication & Authorization
    "password",
    "hashed_password",
    "password_hash",
    "token",
    "authorization",
    "refresh_token",
    "access_token",
    "secret",
    "api_key",
    "private_key",
    "client_secret",
    "mfa_secret",
    "otp",
    # Document content (large blobs)
    "document_content",
    "file_content",
    "file_data",
    "binary_data",
    # Client financial details
    "card_number",
    "cvv",
}

# Keys that should be masked instead of removed
MASK_KEYS = {
    "iban",
    "account_number",
    "ssn",
}

REDACTED = "**REDACTED**"
MASKED = "**MASKED**"


def _serialize_value(value: Any) -> Any:
    """Convert a scalar to a JSON-serializable value."""
    if isinstance(value, UUID):
        return str(value)
    elif isinstance(value, Decimal):
        return float(value)
    elif isinstance(value, (datetime, date, time)):
        return value.isoformat()
    elif isinstance(value, bytes):
        return f"<binary data {len(value)} bytes>"
    return value


def sanitize_value(value: Any, max_string: Optional[int] = None) -> Any:
    """
    Sanitize a single value (recursive for nested structures).

    Args:
        value: The value to sanitize
        max_string: Truncation threshold, defaults to AUDIT_PAYLOAD_MAX_STRING

    Returns:
        The sanitized value
    """
    limit = settings.AUDIT_PAYLOAD_MAX_STRING if max_string is None else max_string
    if isinstance(value, dict):
        return sanitize_payload(value, max_string=limit)
    elif isinstance(value, (list, tuple, set)):
        return [sanitize_value(item, max_string=limit) for item in value]
    elif isinstance(value, str) and len(value) > limit:
        return f"{value[:100]}... [TRUNCATED {len(value)} chars]"
    else:
        return _serialize_value(value)


def sanitize_payload(payload: Optional[dict], max_string: Optional[int] = None) -> Optional[dict]:
    """
    Sanitize a payload dictionary by removing/masking sensitive fields.

    This function:
    - Redacts keys like password, token, secret, etc.
    - Masks account identifiers (shows only first 4 and last 4 chars)
    - Truncates large text fields
    - Works recursively for nested dictionaries

    Args:
        payload: The payload dictionary to sanitize

    Returns:
        A sanitized copy of the payload
    """
    if not isinstance(payload, dict):
        return payload

    sanitized = {}

    for key, value in payload.items():
        key = str(key)
        key_lower = key.lower()

        if key_lower in SENSITIVE_KEYS:
            sanitized[key] = REDACTED
            continue

        if key_lower in MASK_KEYS:
            if isinstance(value, str) and len(value) > 8:
                sanitized[key] = f"{value[:4]}{MASKED}{value[-4:]}"
            else:
                sanitized[key] = MASKED
            continue

        sanitized[key] = sanitize_value(value, max_string=max_string)

    return sanitized
