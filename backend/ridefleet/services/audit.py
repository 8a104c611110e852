from sqlalchemy.orm import Session

from ridefleet.core.config import Settings
from ridefleet.core.security import pii_hash
from ridefleet.models.audit_log import AuditLog


def audit(db: Session, actor_user_id, entity_type: str, entity_id: str, action: str, data: dict | None = None):
    row = AuditLog(
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        data=data or {},
    )
    db.add(row)


def contact_entity_id(settings: Settings, channel: str, value: str) -> str:
    return f"{channel}_sha256:{pii_hash(settings, value, channel)}"
