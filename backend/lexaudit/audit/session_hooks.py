"""
SQLAlchemy Session Event Hooks for Audit Log Immutability

The repository never exposes a working update or delete for audit entries.
This hook closes the remaining ORM path: a flush that would UPDATE or DELETE
a persisted AuditLog row is rejected with ImmutabilityViolation.

Raw SQL bypasses the ORM and therefore this hook; tampering of that kind is
what the integrity verifier detects.
"""
import logging
from typing import Any, Dict

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from lexaudit.audit.errors import ImmutabilityViolation
from lexaudit.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


def get_changed_attributes(instance: Any) -> Dict[str, tuple]:
    """
    Get the changed column attributes of a model instance.

    Returns:
        Dict of {attribute_name: (old_value, new_value)}
    """
    insp = inspect(instance)
    changes = {}

    for attr in insp.mapper.column_attrs:
        attr_state = insp.attrs.get(attr.key)
        if attr_state and attr_state.history.has_changes():
            history = attr_state.history
            old_value = history.deleted[0] if history.deleted else None
            changes[attr.key] = (old_value, getattr(instance, attr.key, None))

    return changes


def handle_before_flush(session: Session, flush_context, instances) -> None:
    """
    SQLAlchemy event handler for before_flush.

    Raises:
        ImmutabilityViolation: if a persisted AuditLog is modified or deleted
    """
    for instance in session.deleted:
        if isinstance(instance, AuditLog):
            logger.warning(f"Blocked ORM delete of audit entry {instance.log_id}")
            raise ImmutabilityViolation(log_id=instance.log_id)

    for instance in session.dirty:
        if not isinstance(instance, AuditLog):
            continue
        changes = get_changed_attributes(instance)
        if changes:
            logger.warning(
                f"Blocked ORM update of audit entry {instance.log_id} "
                f"(fields: {sorted(changes)})"
            )
            raise ImmutabilityViolation(log_id=instance.log_id)


def register_audit_hooks(session_factory) -> None:
    """
    Register the immutability guard on the session factory's session class.

    Safe to call more than once.

    Args:
        session_factory: The SQLAlchemy session factory (async_sessionmaker)
    """
    from sqlalchemy.ext.asyncio import AsyncSession

    session_class = session_factory.class_

    if issubclass(session_class, AsyncSession):
        # AsyncSession wraps a regular Session for the actual flush
        target = session_class.sync_session_class
    else:
        target = session_class

    if event.contains(target, "before_flush", handle_before_flush):
        return

    event.listen(target, "before_flush", handle_before_flush)
    logger.info(f"Audit immutability guard registered on {target.__name__}")
