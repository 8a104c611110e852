import sqlalchemy as sa
from sqlalchemy.orm import Session

from ridefleet.models.role import Permission, RolePermission


def identifiers_for_roles(db: Session, role_ids: list[str]) -> list[str]:
    if not role_ids:
        return []
    rows = db.execute(
        sa.select(Permission.identifier)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id.in_(role_ids))
        .distinct()
        .order_by(Permission.identifier)
    ).scalars()
    return list(rows)


def upsert(db: Session, identifier: str) -> Permission:
    perm = db.execute(sa.select(Permission).where(Permission.identifier == identifier)).scalar_one_or_none()
    if perm:
        return perm
    perm = Permission(identifier=identifier)
    db.add(perm)
    db.flush()
    return perm


def grant(db: Session, role_id: str, permission_id: str) -> None:
    exists = db.get(RolePermission, (role_id, permission_id))
    if not exists:
        db.add(RolePermission(role_id=role_id, permission_id=permission_id))
        db.flush()
