from functools import lru_cache

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ridefleet.core.config import Settings, settings
from ridefleet.core.constants import is_known_role
from ridefleet.core.errors import Unauthorized, ValidationFailed
from ridefleet.db.session import get_db
from ridefleet.modules.auth.service import AuthService
from ridefleet.services.notifications import NotificationDispatcher, build_dispatcher
from ridefleet.services.oauth import OAuthVerifier, OAuthVerifierProtocol
from ridefleet.services.tokens import TokenService

bearer = HTTPBearer(auto_error=False)


def get_settings() -> Settings:
    return settings


@lru_cache
def _oauth_verifier() -> OAuthVerifier:
    # Shared so the JWKS cache survives across requests.
    return OAuthVerifier(settings)


def get_oauth_verifier() -> OAuthVerifierProtocol:
    return _oauth_verifier()


def get_notifier(cfg: Settings = Depends(get_settings)) -> NotificationDispatcher:
    return build_dispatcher(cfg)


def get_auth_service(
    db: Session = Depends(get_db),
    cfg: Settings = Depends(get_settings),
    verifier: OAuthVerifierProtocol = Depends(get_oauth_verifier),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> AuthService:
    return AuthService(db, cfg, verifier, notifier)


def require_app_type(x_app_type: str | None = Header(default=None)) -> str:
    if not x_app_type or not is_known_role(x_app_type):
        raise ValidationFailed("Invalid or missing x-app-type header")
    return x_app_type


def optional_app_type(x_app_type: str | None = Header(default=None)) -> str | None:
    if x_app_type is None:
        return None
    return require_app_type(x_app_type)


def get_access_claims(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    cfg: Settings = Depends(get_settings),
) -> dict:
    if creds is None or not creds.credentials:
        raise Unauthorized("Invalid token", reason="token_missing")
    return TokenService(cfg).decode_access_token(creds.credentials)


def get_current_user_id(claims: dict = Depends(get_access_claims)) -> str:
    return str(claims["sub"])
