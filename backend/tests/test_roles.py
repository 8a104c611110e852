import pytest
import sqlalchemy as sa

from ridefleet.core.errors import Conflict, NotFound
from ridefleet.models.profile import UserProfile
from ridefleet.models.role import UserRole
from ridefleet.repositories import roles as roles_repo
from ridefleet.repositories import users as users_repo
from ridefleet.services.roles import assign_role, ensure_role_and_profile


def _count(db, model, user_id):
    return db.execute(sa.select(sa.func.count()).select_from(model).where(model.user_id == user_id)).scalar_one()


@pytest.fixture
def user(db):
    row = users_repo.create(db, phone_number="+15550003333")
    db.commit()
    return row


def test_regrant_is_a_noop(db, user):
    assign_role(db, user.id, "rider")
    assign_role(db, user.id, "rider")
    db.commit()
    assert _count(db, UserRole, user.id) == 1


def test_strict_regrant_conflicts_without_a_second_row(db, user):
    assign_role(db, user.id, "rider")
    with pytest.raises(Conflict):
        assign_role(db, user.id, "rider", strict=True)
    db.commit()
    assert _count(db, UserRole, user.id) == 1


def test_unknown_role_is_not_found(db, user):
    with pytest.raises(NotFound):
        assign_role(db, user.id, "dispatcher")


def test_roles_are_listed_oldest_first(db, user):
    assign_role(db, user.id, "driver")
    assign_role(db, user.id, "rider")
    db.commit()
    assert [r.identifier for r in roles_repo.list_for_user(db, user.id)] == ["driver", "rider"]


def test_profile_find_or_create_is_idempotent(db, user):
    first = ensure_role_and_profile(db, user.id, "driver")
    second = ensure_role_and_profile(db, user.id, "driver")
    db.commit()

    assert first.profile.id == second.profile.id
    assert first.profile.status == "active"
    assert first.profile.is_profile_updated is False
    assert _count(db, UserProfile, user.id) == 1
    assert _count(db, UserRole, user.id) == 1


def test_profile_per_role(db, user):
    driver = ensure_role_and_profile(db, user.id, "driver")
    rider = ensure_role_and_profile(db, user.id, "rider")
    db.commit()
    assert driver.profile.id != rider.profile.id
    assert _count(db, UserProfile, user.id) == 2


def test_profile_is_updated_once_names_are_set(db, user):
    binding = ensure_role_and_profile(db, user.id, "rider")
    binding.profile.first_name = "Ada"
    assert binding.profile.is_profile_updated is False
    binding.profile.last_name = "Lovelace"
    assert binding.profile.is_profile_updated is True
