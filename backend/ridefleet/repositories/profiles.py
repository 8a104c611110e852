from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy.orm import Session

from ridefleet.core.constants import PROFILE_ACTIVE
from ridefleet.db.dialect import insert_ignore
from ridefleet.models.profile import UserProfile
from ridefleet.models.role import Role


def get(db: Session, user_id: str, role_id: str) -> UserProfile | None:
    return db.execute(
        sa.select(UserProfile).where(UserProfile.user_id == user_id, UserProfile.role_id == role_id)
    ).scalar_one_or_none()


def get_for_role_identifier(db: Session, user_id: str, role_identifier: str) -> UserProfile | None:
    return db.execute(
        sa.select(UserProfile)
        .join(Role, Role.id == UserProfile.role_id)
        .where(UserProfile.user_id == user_id, Role.identifier == role_identifier)
    ).scalar_one_or_none()


def list_for_user(db: Session, user_id: str) -> list[UserProfile]:
    rows = db.execute(
        sa.select(UserProfile).where(UserProfile.user_id == user_id).order_by(UserProfile.created_at, UserProfile.id)
    ).scalars()
    return list(rows)


def first_active(db: Session, user_id: str) -> UserProfile | None:
    return db.execute(
        sa.select(UserProfile)
        .where(UserProfile.user_id == user_id, UserProfile.status == PROFILE_ACTIVE)
        .order_by(UserProfile.created_at, UserProfile.id)
        .limit(1)
    ).scalar_one_or_none()


def insert_if_missing(db: Session, user_id: str, role_id: str) -> bool:
    inserted = insert_ignore(
        db,
        UserProfile,
        {"id": str(uuid4()), "user_id": user_id, "role_id": role_id, "status": PROFILE_ACTIVE},
        index_elements=["user_id", "role_id"],
    )
    return inserted > 0
