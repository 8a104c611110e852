from dataclasses import dataclass

from sqlalchemy.orm import Session

from ridefleet.core.errors import Conflict, NotFound
from ridefleet.core.logging import get_logger
from ridefleet.models.profile import UserProfile
from ridefleet.models.role import Role
from ridefleet.repositories import profiles as profiles_repo
from ridefleet.repositories import roles as roles_repo

log = get_logger(__name__)

# Seeded by scripts/seed_roles.py.
DEFAULT_ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    "super_admin": ("admin:*",),
    "client": ("profile:view",),
    "staff": ("profile:view",),
    "rider": ("rides:book", "rides:view", "profile:edit"),
    "driver": ("rides:accept", "rides:complete", "rides:view", "profile:edit"),
}


@dataclass(frozen=True)
class RoleBinding:
    role: Role
    profile: UserProfile


def require_role(db: Session, role_identifier: str) -> Role:
    role = roles_repo.get_by_identifier(db, role_identifier)
    if not role:
        raise NotFound(f"Role '{role_identifier}' not found")
    return role


def assign_role(db: Session, user_id: str, role_identifier: str, strict: bool = False) -> Role:
    """Grant a role. Re-granting a held role is a no-op unless ``strict``."""
    role = require_role(db, role_identifier)
    inserted = roles_repo.insert_user_role(db, user_id, role.id)
    if not inserted and strict:
        raise Conflict("Role already assigned", details={"role": role_identifier})
    if inserted:
        log.info("role_assigned", user_id=user_id, role=role_identifier)
    return role


def ensure_role_and_profile(db: Session, user_id: str, role_identifier: str) -> RoleBinding:
    role = assign_role(db, user_id, role_identifier)
    # Unique (user_id, role_id) plus ON CONFLICT DO NOTHING; concurrent
    # callers converge on the same row.
    if profiles_repo.insert_if_missing(db, user_id, role.id):
        log.info("profile_created", user_id=user_id, role=role_identifier)
    profile = profiles_repo.get(db, user_id, role.id)
    if profile is None:
        raise NotFound("Profile not found")
    return RoleBinding(role=role, profile=profile)
