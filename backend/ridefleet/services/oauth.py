from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol
from urllib import request as urlrequest

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from ridefleet.core.config import Settings
from ridefleet.core.constants import APPLE_PRIVATE_RELAY_DOMAIN, AuthProvider
from ridefleet.core.errors import ProviderError, Unauthorized, ValidationFailed
from ridefleet.core.logging import get_logger

log = get_logger(__name__)

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")
APPLE_ISSUER = "https://appleid.apple.com"

# Apple's real_user_status claim: 0 unsupported, 1 unknown, 2 likely real.
_APPLE_REAL_USER_STATUS = {0: "unsupported", 1: "unknown", 2: "likely_real"}


@dataclass(frozen=True)
class OAuthIdentity:
    provider: str
    external_id: str | None
    email: str | None
    display_name: str | None = None
    is_private_email: bool = False
    real_user_status: str | None = None


class OAuthVerifierProtocol(Protocol):
    def verify(self, provider: str, token: str) -> OAuthIdentity:
        ...


def _http_json_get(url: str, *, timeout: int) -> dict:
    req = urlrequest.Request(url=url, method="GET", headers={"Accept": "application/json"})
    with urlrequest.urlopen(req, timeout=timeout) as resp:
        raw = resp.read().decode("utf-8")
    return json.loads(raw)


class JwksCache:
    """Per-URL JWKS documents, refetched after ``ttl_seconds``."""

    def __init__(
        self,
        ttl_seconds: int,
        timeout_seconds: int,
        fetcher: Callable[..., dict] = _http_json_get,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.fetcher = fetcher
        self.clock = clock
        self._docs: dict[str, tuple[float, dict]] = {}
        self._lock = threading.Lock()

    def get(self, url: str, force: bool = False) -> dict:
        with self._lock:
            cached = self._docs.get(url)
            if cached and not force and self.clock() - cached[0] < self.ttl_seconds:
                return cached[1]
        doc = self.fetcher(url, timeout=self.timeout_seconds)
        if not isinstance(doc, dict) or not isinstance(doc.get("keys"), list):
            raise ValueError(f"Malformed JWKS document from {url}")
        with self._lock:
            self._docs[url] = (self.clock(), doc)
        return doc

    def key_for(self, url: str, kid: str | None) -> dict | None:
        doc = self.get(url)
        key = _match_kid(doc, kid)
        if key is None:
            # Provider may have rotated keys since the last fetch.
            key = _match_kid(self.get(url, force=True), kid)
        return key


def _match_kid(doc: dict, kid: str | None) -> dict | None:
    for key in doc.get("keys", []):
        if kid is None or key.get("kid") == kid:
            return key
    return None


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


class OAuthVerifier:
    def __init__(self, settings: Settings, jwks: JwksCache | None = None):
        self.settings = settings
        self.jwks = jwks or JwksCache(
            ttl_seconds=settings.OAUTH_JWKS_CACHE_SECONDS,
            timeout_seconds=settings.OAUTH_HTTP_TIMEOUT_SECONDS,
        )

    def verify(self, provider: str, token: str) -> OAuthIdentity:
        if not token or not token.strip():
            raise ValidationFailed("OAuth token is required")
        if provider == AuthProvider.GOOGLE.value:
            return self._verify_google(token)
        if provider == AuthProvider.APPLE.value:
            return self._verify_apple(token)
        raise ValidationFailed(f"Unsupported OAuth provider '{provider}'")

    def _decode(self, provider: str, token: str, jwks_url: str, audiences: set[str], issuers: tuple[str, ...]) -> dict:
        if not audiences:
            log.error("oauth_not_configured", provider=provider)
            raise ProviderError(provider)
        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            raise Unauthorized("Invalid OAuth token", reason="oauth_token_invalid")
        try:
            key = self.jwks.key_for(jwks_url, header.get("kid"))
        except Exception as exc:
            log.warning("oauth_jwks_unavailable", provider=provider, error=str(exc))
            raise ProviderError(provider) from exc
        if key is None:
            raise Unauthorized("Invalid OAuth token", reason="oauth_unknown_key")

        try:
            # aud may be any of several client ids, checked below.
            claims = jwt.decode(
                token,
                key,
                algorithms=[key.get("alg") or "RS256"],
                options={"verify_aud": False, "verify_at_hash": False},
            )
        except ExpiredSignatureError:
            raise Unauthorized("Invalid OAuth token", reason="oauth_token_expired")
        except JWTError as exc:
            log.info("oauth_verification_failed", provider=provider, error=str(exc))
            raise Unauthorized("Invalid OAuth token", reason="oauth_token_invalid")

        aud = claims.get("aud")
        aud_values = set(aud) if isinstance(aud, list) else {aud}
        if not aud_values & audiences:
            log.info("oauth_verification_failed", provider=provider, error="audience mismatch")
            raise Unauthorized("Invalid OAuth token", reason="oauth_audience_mismatch")
        if claims.get("iss") not in issuers:
            log.info("oauth_verification_failed", provider=provider, error="issuer mismatch")
            raise Unauthorized("Invalid OAuth token", reason="oauth_issuer_mismatch")
        return claims

    def _verify_google(self, token: str) -> OAuthIdentity:
        audiences = {a for a in (self.settings.GOOGLE_CLIENT_ID, self.settings.GOOGLE_CLIENT_ID_IOS) if a}
        claims = self._decode("google", token, self.settings.GOOGLE_JWKS_URL, audiences, GOOGLE_ISSUERS)
        email = claims.get("email")
        if email and "email_verified" in claims and not _as_bool(claims.get("email_verified")):
            raise Unauthorized("Invalid OAuth token", reason="oauth_email_unverified")
        return OAuthIdentity(
            provider="google",
            external_id=claims.get("sub"),
            email=email,
            display_name=claims.get("name"),
        )

    def _verify_apple(self, token: str) -> OAuthIdentity:
        audiences = {a for a in (self.settings.APPLE_BUNDLE_ID, self.settings.APPLE_SERVICE_ID) if a}
        claims = self._decode("apple", token, self.settings.APPLE_JWKS_URL, audiences, (APPLE_ISSUER,))
        email = claims.get("email")
        is_private = _as_bool(claims.get("is_private_email")) or bool(email and APPLE_PRIVATE_RELAY_DOMAIN in email)
        status = claims.get("real_user_status")
        if isinstance(status, str) and status.isdigit():
            status = int(status)
        return OAuthIdentity(
            provider="apple",
            external_id=claims.get("sub"),
            email=email,
            display_name=None,
            is_private_email=is_private,
            real_user_status=_APPLE_REAL_USER_STATUS.get(status, "unknown"),
        )
