import argparse

from ridefleet.core.config import settings
from ridefleet.core.constants import AuthRole
from ridefleet.core.security import now_utc
from ridefleet.db.session import SessionLocal
from ridefleet.repositories import permissions as permissions_repo
from ridefleet.repositories import roles as roles_repo
from ridefleet.repositories import users as users_repo
from ridefleet.services.identity import normalize_email, set_password
from ridefleet.services.roles import DEFAULT_ROLE_PERMISSIONS, ensure_role_and_profile


def seed_roles(db) -> int:
    created = 0
    for role in AuthRole:
        existed = roles_repo.get_by_identifier(db, role.value) is not None
        row = roles_repo.upsert(db, role.value, role.value.replace("_", " ").title())
        created += 0 if existed else 1
        for identifier in DEFAULT_ROLE_PERMISSIONS.get(role.value, ("profile:view",)):
            perm = permissions_repo.upsert(db, identifier)
            permissions_repo.grant(db, row.id, perm.id)
    return created


def seed_admin(db, email: str, password: str, rounds: int | None = None) -> str:
    """Create (or re-password) a super admin with an active profile."""
    address = normalize_email(email)
    user = users_repo.get_by_email(db, address, include_deleted=True)
    if user is None:
        user = users_repo.create(db, email=address, email_verified_at=now_utc(), is_policy_allowed=True)
    elif user.is_deleted:
        users_repo.restore(db, user)
    set_password(db, user, password, rounds=rounds or settings.PASSWORD_BCRYPT_ROUNDS)
    ensure_role_and_profile(db, user.id, AuthRole.SUPER_ADMIN.value)
    return user.id


def main():
    parser = argparse.ArgumentParser(description="Seed roles, permissions and an optional super admin.")
    parser.add_argument("--admin-email")
    parser.add_argument("--admin-password")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        created = seed_roles(db)
        admin_id = None
        if args.admin_email:
            if not args.admin_password:
                parser.error("--admin-password is required with --admin-email")
            admin_id = seed_admin(db, args.admin_email, args.admin_password)
        db.commit()
        print(f"ok: roles seeded (created={created}, admin={admin_id or '-'})")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
