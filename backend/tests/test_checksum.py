"""
Tests for the audit log checksum function.

Tests cover:
- Determinism and output format
- Chaining on the previous checksum
- Canonical timestamp handling (naive / aware / offset)
- Fields that must not influence the checksum
"""
import hashlib
import json
from datetime import datetime, timezone, timedelta

import pytest

from lexaudit.audit.checksum import (
    GENESIS_CHECKSUM,
    canonical_serialize,
    canonical_timestamp,
    checksum_fields,
    compute_checksum,
)


TS = datetime(2026, 3, 14, 9, 26, 53, 589793, tzinfo=timezone.utc)


def _entry(**overrides) -> dict:
    entry = {
        "event_type": "Login",
        "user_id": "64b7f0c2a1e4d5f6a7b8c9d0",
        "action": "login",
        "resource": None,
        "timestamp": TS,
        "ip_address": "10.0.0.1",
    }
    entry.update(overrides)
    return entry


class TestChecksumFunction:
    def test_same_input_same_output(self):
        fields = checksum_fields(_entry())
        assert compute_checksum(fields, "abc") == compute_checksum(fields, "abc")

    def test_output_is_lowercase_sha256_hex(self):
        digest = compute_checksum(checksum_fields(_entry()), GENESIS_CHECKSUM)
        assert len(digest) == 64
        assert digest == digest.lower()
        int(digest, 16)

    def test_matches_documented_formula(self):
        """checksum = SHA256(sorted compact JSON of the six fields + previous)."""
        previous = "f" * 64
        expected_json = json.dumps(
            {
                "action": "login",
                "event_type": "Login",
                "ip_address": "10.0.0.1",
                "resource": "",
                "timestamp": "2026-03-14T09:26:53.589793Z",
                "user_id": "64b7f0c2a1e4d5f6a7b8c9d0",
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        expected = hashlib.sha256((expected_json + previous).encode("utf-8")).hexdigest()

        assert compute_checksum(checksum_fields(_entry()), previous) == expected

    def test_previous_checksum_changes_result(self):
        fields = checksum_fields(_entry())
        assert compute_checksum(fields, "") != compute_checksum(fields, "0" * 64)

    @pytest.mark.parametrize("field,value", [
        ("event_type", "Logout"),
        ("user_id", "someone-else"),
        ("action", "logout"),
        ("resource", "case"),
        ("ip_address", "10.0.0.2"),
        ("timestamp", TS + timedelta(microseconds=1)),
    ])
    def test_each_canonical_field_is_covered(self, field, value):
        original = compute_checksum(checksum_fields(_entry()), "")
        changed = compute_checksum(checksum_fields(_entry(**{field: value})), "")
        assert original != changed

    def test_missing_actor_and_resource_serialize_as_empty(self):
        without = checksum_fields(_entry(user_id=None, resource=None))
        empty = checksum_fields(_entry(user_id="", resource=""))
        assert without == empty
        assert without["user_id"] == ""
        assert without["resource"] == ""

    def test_non_canonical_fields_are_ignored(self):
        plain = checksum_fields(_entry())
        decorated = checksum_fields(_entry(
            description="User logged in from the office",
            changes_before={"role": "paralegal"},
            changes_after={"role": "attorney"},
            severity="High",
        ))
        assert plain == decorated
        assert compute_checksum(plain, "") == compute_checksum(decorated, "")

    def test_enum_values_serialize_as_their_value(self):
        from lexaudit.models.audit_log import AuditEventType

        assert checksum_fields(_entry(event_type=AuditEventType.LOGIN))["event_type"] == "Login"

    def test_reads_attributes_from_objects(self):
        class Row:
            pass

        row = Row()
        for key, value in _entry().items():
            setattr(row, key, value)

        assert checksum_fields(row) == checksum_fields(_entry())

    def test_timestamp_must_be_datetime(self):
        with pytest.raises(TypeError):
            checksum_fields(_entry(timestamp="2026-03-14T09:26:53Z"))

    def test_canonical_serialization_is_order_stable(self):
        fields = checksum_fields(_entry())
        reversed_fields = dict(reversed(list(fields.items())))
        assert canonical_serialize(fields) == canonical_serialize(reversed_fields)


class TestCanonicalTimestamp:
    def test_naive_timestamp_is_treated_as_utc(self):
        naive = TS.replace(tzinfo=None)
        assert canonical_timestamp(naive) == canonical_timestamp(TS)

    def test_offset_timestamp_is_normalized_to_utc(self):
        amsterdam = TS.astimezone(timezone(timedelta(hours=2)))
        assert canonical_timestamp(amsterdam) == "2026-03-14T09:26:53.589793Z"

    def test_whole_seconds_keep_microsecond_precision(self):
        whole = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert canonical_timestamp(whole) == "2026-01-01T00:00:00.000000Z"
