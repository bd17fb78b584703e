# Models module
from lexaudit.models.audit_log import AuditLog, AuditEventType, AuditEventCategory, AuditSeverity
