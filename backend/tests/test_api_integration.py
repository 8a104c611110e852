from __future__ import annotations

import pytest

from tests.testkit import ApiError, signup_and_login_email, signup_and_login_phone

pytestmark = pytest.mark.regression


def test_driver_phone_login_and_me(api, identity_factory):
    login = signup_and_login_phone(api, identity_factory.next_phone(), role="driver")
    assert "driver" in login["roles"]
    assert login["isProfileUpdated"] is False

    me = api.call("GET", "/auth/me", token=login["accessToken"], app_type="driver")
    assert me["data"]["id"] == login["userId"]
    assert me["data"]["profile"]["id"] == login["userProfileId"]


def test_same_phone_can_hold_two_roles(api, identity_factory):
    phone = identity_factory.next_phone()
    rider = signup_and_login_phone(api, phone, role="rider")
    driver = signup_and_login_phone(api, phone, role="driver")
    assert rider["userId"] == driver["userId"]
    assert rider["userProfileId"] != driver["userProfileId"]
    assert set(driver["roles"]) == {"rider", "driver"}


def test_refresh_rotation_and_logout(api, identity_factory):
    login = signup_and_login_email(api, identity_factory.next_email())

    rotated = api.call(
        "POST", "/auth/refresh-token", app_type="rider", body={"refresh_token": login["refreshToken"]}
    )["data"]
    assert rotated["refreshToken"] != login["refreshToken"]

    with pytest.raises(ApiError) as reused:
        api.call("POST", "/auth/refresh-token", body={"refresh_token": login["refreshToken"]})
    assert reused.value.status_code == 401

    api.call("POST", "/auth/logout", token=rotated["accessToken"])
    with pytest.raises(ApiError) as after_logout:
        api.call("POST", "/auth/refresh-token", body={"refresh_token": rotated["refreshToken"]})
    assert after_logout.value.status_code == 401


def test_email_signup_rejects_driver_app(api, identity_factory):
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/auth/email/signup", app_type="driver", body={"email": identity_factory.next_email()})
    assert exc.value.status_code == 400
    assert exc.value.payload["success"] is False


def test_missing_app_type_is_rejected(api, identity_factory):
    with pytest.raises(ApiError) as exc:
        api.call("POST", "/auth/phone/signup", body={"phone_number": identity_factory.next_phone()})
    assert exc.value.status_code == 400
