"""
Audit Log Checksum

Computes the chained checksum of an audit entry using SHA-256.

Formula:
    checksum = SHA256(canonical_json(fields) + previous_checksum)

Rules:
- Canonical JSON: sorted keys, compact separators, ASCII only
- fields are exactly event_type, user_id, action, resource, timestamp, ip_address
- Missing user_id / resource serialize as ""
- Timestamps are UTC, rendered as YYYY-MM-DDTHH:MM:SS.ffffffZ
- First entry of the chain uses "" as previous_checksum

The writer and the verifier both go through checksum_fields() and
compute_checksum(), so the serialization cannot drift between them.
"""
import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Mapping

GENESIS_CHECKSUM = ""

CHECKSUM_FIELDS = (
    "event_type",
    "user_id",
    "action",
    "resource",
    "timestamp",
    "ip_address",
)


def to_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to timezone-aware UTC.

    Naive values are taken to be UTC already (SQLite returns stored
    timestamps without tzinfo).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def canonical_timestamp(value: datetime) -> str:
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    # Enum members and identifiers
    return str(getattr(value, "value", value))


def checksum_fields(source: Any) -> dict[str, str]:
    """
    Extract the canonical checksum input from an entry.

    Args:
        source: an AuditLog row, a pydantic entry, or a mapping with the
            same attribute names

    Returns:
        Dict with exactly the CHECKSUM_FIELDS keys, all strings
    """
    if isinstance(source, Mapping):
        get = source.get
    else:
        def get(key):
            return getattr(source, key, None)

    timestamp = get("timestamp")
    if not isinstance(timestamp, datetime):
        raise TypeError(f"timestamp must be a datetime, got {type(timestamp).__name__}")

    return {
        "event_type": _text(get("event_type")),
        "user_id": _text(get("user_id")),
        "action": _text(get("action")),
        "resource": _text(get("resource")),
        "timestamp": canonical_timestamp(timestamp),
        "ip_address": _text(get("ip_address")),
    }


def canonical_serialize(fields: Mapping[str, str]) -> str:
    return json.dumps(
        {key: fields[key] for key in CHECKSUM_FIELDS},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
    )


def compute_checksum(fields: Mapping[str, str], previous_checksum: str) -> str:
    """
    Compute the chained SHA-256 checksum of an audit entry.

    Args:
        fields: canonical fields as returned by checksum_fields()
        previous_checksum: checksum of the preceding entry, or GENESIS_CHECKSUM

    Returns:
        64-character lowercase hex digest
    """
    hash_input = canonical_serialize(fields) + (previous_checksum or GENESIS_CHECKSUM)
    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()
