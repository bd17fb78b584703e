"""
Audit Log Retention Policy

Maps an entry's creation time to the date it becomes eligible for archival.
The expiration is computed once, by the writer, when the entry is created.

Moving or purging entries past their retention date is done by a separate
archival job; AuditLogRepository.find_archivable lists the entries it is due for.
"""
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta

from lexaudit.audit.checksum import to_utc
from lexaudit.audit.errors import AuditValidationError
from lexaudit.core.config import settings


# Typical legal retention for law firm records is 7 years
RETENTION_POLICIES: dict[str, relativedelta] = {
    "1_year": relativedelta(years=1),
    "3_years": relativedelta(years=3),
    "5_years": relativedelta(years=5),
    "7_years": relativedelta(years=7),
    "10_years": relativedelta(years=10),
}

DEFAULT_RETENTION_POLICY = "7_years"


def resolve_policy_name(policy_name: Optional[str] = None) -> str:
    """
    Resolve and validate a retention policy name.

    Falls back to the AUDIT_RETENTION_POLICY setting when no name is given.

    Raises:
        AuditValidationError: If the policy name is unknown
    """
    name = (policy_name or settings.AUDIT_RETENTION_POLICY or DEFAULT_RETENTION_POLICY).strip().lower()
    if name not in RETENTION_POLICIES:
        raise AuditValidationError(
            f"Unknown retention policy: {policy_name}. "
            f"Must be one of: {', '.join(sorted(RETENTION_POLICIES))}"
        )
    return name


def compute_expiration(created_at: datetime, policy_name: Optional[str] = None) -> datetime:
    """
    Compute the retention date for an entry created at created_at.

    Calendar arithmetic: a 7 year policy on 2024-02-29 expires 2031-02-28.
    """
    return to_utc(created_at) + RETENTION_POLICIES[resolve_policy_name(policy_name)]

