from datetime import timedelta

import sqlalchemy as sa

from ridefleet.core.security import now_utc
from ridefleet.models.role import Role
from ridefleet.repositories import refresh_tokens as refresh_repo
from ridefleet.repositories import roles as roles_repo
from ridefleet.repositories import users as users_repo
from scripts.cleanup_auth_artifacts import run
from scripts.seed_roles import seed_admin, seed_roles


def test_cleanup_purges_stale_artifacts(db, cfg):
    now = now_utc()
    stale = users_repo.create(db, phone_number="+15550005555", otp_secret="JBSWY3DPEHPK3PXP", otp_expires_at=now - timedelta(hours=1))
    fresh = users_repo.create(db, phone_number="+15550005556", otp_secret="JBSWY3DPEHPK3PXQ", otp_expires_at=now + timedelta(minutes=5))
    refresh_repo.create(db, stale.id, "expired-hash", now - timedelta(days=1))
    refresh_repo.create(db, stale.id, "live-hash", now + timedelta(days=1))
    db.commit()

    counts = run(db, cfg)
    db.commit()

    assert counts == {"refresh_tokens_expired": 1, "refresh_tokens_revoked": 0, "otp_secrets_cleared": 1}
    db.expire_all()
    assert users_repo.get_by_id(db, stale.id).otp_secret is None
    assert users_repo.get_by_id(db, fresh.id).otp_secret is not None
    assert refresh_repo.get_by_hash(db, "live-hash") is not None


def test_seed_roles_is_idempotent(db):
    # The db fixture has already seeded once.
    assert seed_roles(db) == 0
    assert db.execute(sa.select(sa.func.count(Role.id))).scalar_one() == 5


def test_seed_admin_is_repeatable(db):
    first = seed_admin(db, "Root@Example.com", "first-password", rounds=4)
    second = seed_admin(db, "root@example.com", "second-password", rounds=4)
    db.commit()
    assert first == second
    assert [r.identifier for r in roles_repo.list_for_user(db, first)] == ["super_admin"]
