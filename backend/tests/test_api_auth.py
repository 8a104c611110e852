import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from starlette.websockets import WebSocketDisconnect

from ridefleet.api.deps import get_notifier, get_oauth_verifier, get_settings
from ridefleet.db.session import get_db
from ridefleet.main import app
from ridefleet.services.oauth import OAuthIdentity
from tests.testkit import make_settings

PHONE = "+15550000001"


@pytest.fixture
def client(engine, db, notifier, oauth_verifier):
    # db fixture seeds roles on the shared in-memory engine.
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    cfg = make_settings()

    def override_db():
        session = factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_settings] = lambda: cfg
    app.dependency_overrides[get_oauth_verifier] = lambda: oauth_verifier
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _login(client, notifier, phone=PHONE, role="driver") -> dict:
    headers = {"x-app-type": role}
    resp = client.post("/auth/phone/signup", json={"phone_number": phone}, headers=headers)
    assert resp.status_code == 200, resp.text
    resp = client.post("/auth/phone/verify", json={"phone_number": phone, "otp": notifier.last_code()}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Request-ID"]


def test_request_id_is_echoed(client):
    resp = client.get("/health", headers={"x-request-id": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"


def test_phone_signup_and_verify(client, notifier):
    resp = client.post("/auth/phone/signup", json={"phone_number": PHONE}, headers={"x-app-type": "driver"})
    body = resp.json()
    assert resp.status_code == 200
    assert body == {"success": True, "message": "OTP sent successfully", "data": {"phoneNumber": PHONE}}

    data = _login(client, notifier)
    assert "driver" in data["roles"]
    assert data["isProfileUpdated"] is False


@pytest.mark.parametrize("headers", [{}, {"x-app-type": "dispatcher"}])
def test_missing_or_unknown_app_type(client, headers):
    resp = client.post("/auth/phone/signup", json={"phone_number": PHONE}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert resp.json()["data"] is None


def test_body_validation_uses_envelope(client):
    resp = client.post("/auth/phone/signup", json={}, headers={"x-app-type": "rider"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert "phone_number" in body["message"]


def test_unregistered_phone_verify_is_401(client):
    resp = client.post(
        "/auth/phone/verify", json={"phone_number": "+15550008888", "otp": "1234"}, headers={"x-app-type": "rider"}
    )
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "Invalid credentials", "data": None}


def test_unknown_contact_resend_is_generic(client, notifier):
    resp = client.post("/auth/phone/resend-otp", json={"phone_number": "+15550007777"})
    assert resp.status_code == 200
    assert resp.json()["data"] == {"phoneNumber": "+15550007777"}
    assert notifier.sent == []


def test_refresh_and_logout(client, notifier):
    data = _login(client, notifier)

    resp = client.post("/auth/refresh-token", json={"refresh_token": data["refreshToken"]}, headers={"x-app-type": "driver"})
    assert resp.status_code == 200
    rotated = resp.json()["data"]

    resp = client.post("/auth/refresh-token", json={"refresh_token": data["refreshToken"]})
    assert resp.status_code == 401

    resp = client.post("/auth/logout", headers={"Authorization": f"Bearer {rotated['accessToken']}"})
    assert resp.status_code == 200
    assert resp.json()["data"] == {"revoked": 1}

    resp = client.post("/auth/refresh-token", json={"refresh_token": rotated["refreshToken"]})
    assert resp.status_code == 401


def test_me_requires_bearer(client, notifier):
    resp = client.get("/auth/me", headers={"x-app-type": "driver"})
    assert resp.status_code == 401

    data = _login(client, notifier)
    resp = client.get("/auth/me", headers={"x-app-type": "driver", "Authorization": f"Bearer {data['accessToken']}"})
    assert resp.status_code == 200
    me = resp.json()["data"]
    assert me["id"] == data["userId"]
    assert me["profile"]["id"] == data["userProfileId"]


def test_oauth_login(client, oauth_verifier):
    oauth_verifier.add("google-token-1", OAuthIdentity(provider="google", external_id="g-1", email="g@example.com"))
    resp = client.post(
        "/auth/oauth/login",
        json={"provider": "google", "access_token": "google-token-1"},
        headers={"x-app-type": "rider"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["roles"] == ["rider"]

    resp = client.post(
        "/auth/oauth/login",
        json={"provider": "google", "access_token": "google-token-unknown"},
        headers={"x-app-type": "rider"},
    )
    assert resp.status_code == 401


def test_websocket_ping_with_query_token(client, notifier):
    data = _login(client, notifier)
    with client.websocket_connect(f"/ws?token={data['accessToken']}") as ws:
        assert ws.receive_json() == {"event": "authenticated", "data": {"userId": data["userId"]}}
        ws.send_json({"event": "ping"})
        assert ws.receive_json() == {"event": "pong", "data": {}}


def test_websocket_authenticate_message(client, notifier):
    data = _login(client, notifier)
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "authenticate", "token": data["accessToken"]})
        assert ws.receive_json()["event"] == "authenticated"
        ws.send_json({"event": "refresh_token", "token": "garbage"})
        assert ws.receive_json()["event"] == "token_refresh_failed"


def test_websocket_bad_token_is_closed(client):
    with client.websocket_connect("/ws?token=garbage") as ws:
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == 4401
