"""
Audit Event Risk Scoring

Scores an event from 0 to 100 so security reviewers can triage the trail.
The score is assigned once, by the writer, when the entry is created, and is
not part of the checksum.

Score components:
- High-risk event type: +30
- Severity: Critical +40, High +30, Medium +20, Low +10
- Failed outcome: +20
- Each reported risk factor: +5
"""
from typing import Optional, Sequence

from lexaudit.models.audit_log import AuditEventType, AuditSeverity


HIGH_RISK_EVENT_TYPES = {
    AuditEventType.LOGIN_FAILED.value,
    AuditEventType.DATA_DELETE.value,
    AuditEventType.SECURITY_ALERT.value,
}

SEVERITY_SCORES = {
    AuditSeverity.CRITICAL.value: 40,
    AuditSeverity.HIGH.value: 30,
    AuditSeverity.MEDIUM.value: 20,
    AuditSeverity.LOW.value: 10,
}

FAILURE_SCORE = 20
RISK_FACTOR_SCORE = 5
MAX_RISK_SCORE = 100

# Entries at or above this score are listed as high risk
HIGH_RISK_THRESHOLD = 70


def compute_risk_score(
    event_type: str,
    severity: str,
    success: bool,
    risk_factors: Optional[Sequence[str]] = None,
) -> int:
    score = 0
    if event_type in HIGH_RISK_EVENT_TYPES:
        score += 30
    score += SEVERITY_SCORES.get(severity, 0)
    if not success:
        score += FAILURE_SCORE
    score += len(risk_factors or ()) * RISK_FACTOR_SCORE
    return min(score, MAX_RISK_SCORE)
