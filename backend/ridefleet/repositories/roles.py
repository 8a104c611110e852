from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy.orm import Session

from ridefleet.db.dialect import insert_ignore
from ridefleet.models.role import Role, UserRole


def get_by_identifier(db: Session, identifier: str) -> Role | None:
    return db.execute(sa.select(Role).where(Role.identifier == identifier)).scalar_one_or_none()


def list_for_user(db: Session, user_id: str) -> list[Role]:
    """Held roles, oldest assignment first."""
    rows = db.execute(
        sa.select(Role)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id)
        .order_by(UserRole.created_at, Role.identifier)
    ).scalars()
    return list(rows)


def user_has_role(db: Session, user_id: str, role_id: str) -> bool:
    row = db.execute(
        sa.select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
    ).first()
    return row is not None


def insert_user_role(db: Session, user_id: str, role_id: str) -> bool:
    """True when a new row was written, False when the user already held the role."""
    inserted = insert_ignore(
        db,
        UserRole,
        {"id": str(uuid4()), "user_id": user_id, "role_id": role_id},
        index_elements=["user_id", "role_id"],
    )
    return inserted > 0


def upsert(db: Session, identifier: str, name: str) -> Role:
    role = get_by_identifier(db, identifier)
    if role:
        return role
    role = Role(identifier=identifier, name=name)
    db.add(role)
    db.flush()
    return role
