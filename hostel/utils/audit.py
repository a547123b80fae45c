from sqlalchemy.orm import Session
from hostel.models.audit_log import AuditLog


def log_action(
    db: Session,
    user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    description: str | None = None,
) -> None:
    """
    Write an audit log entry.

    Args:
        db:          Active DB session (adds but does NOT commit; the caller commits)
        user_id:     ID of user performing the action (None = system action)
        action:      Verb: CREATE, CONFIRM, CHECK_IN, CHECK_OUT, CANCEL, REFUND, RESOLVE, etc.
        entity_type: Model name: "Room", "Allocation", "ServiceRequest"
        entity_id:   Primary key of the affected record
        description: Human-readable description (shown in audit log UI)

    Usage:
        with atomic(db):
            ...
            log_action(db, actor_id, "CONFIRM", "Allocation", allocation.id,
                       f"Allocation #{allocation.id} confirmed, bed {bed}")
    """
    entry = AuditLog(
        userId=user_id,
        action=action,
        entityType=entity_type,
        entityId=entity_id,
        description=description,
    )
    db.add(entry)
    # Do NOT commit here; the caller's transaction commits everything atomically
