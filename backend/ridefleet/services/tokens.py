from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from jose.exceptions import ExpiredSignatureError, JWTError
from sqlalchemy.orm import Session

from ridefleet.core.config import Settings, parse_duration
from ridefleet.core.errors import Unauthorized
from ridefleet.core.logging import get_logger
from ridefleet.core.security import (
    create_access_token,
    decode_token,
    hash_refresh_token,
    new_refresh_token,
    now_utc,
)
from ridefleet.models.profile import UserProfile
from ridefleet.models.user import User
from ridefleet.repositories import permissions as permissions_repo
from ridefleet.repositories import profiles as profiles_repo
from ridefleet.repositories import refresh_tokens as refresh_repo
from ridefleet.repositories import roles as roles_repo
from ridefleet.repositories import users as users_repo

log = get_logger(__name__)


@dataclass
class TokenBundle:
    access_token: str
    refresh_token: str
    expires_in: int
    user_id: str
    user_profile_id: str | None
    roles: list[str] = field(default_factory=list)
    is_profile_updated: bool = False
    email_verified: bool = False
    phone_verified: bool = False
    is_policy_allowed: bool = False
    phone_number: str | None = None
    email: str | None = None

    def as_dict(self) -> dict:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresIn": self.expires_in,
            "userId": self.user_id,
            "userProfileId": self.user_profile_id,
            "roles": list(self.roles),
            "isProfileUpdated": self.is_profile_updated,
            "emailVerified": self.email_verified,
            "phoneVerified": self.phone_verified,
            "isPolicyAllowed": self.is_policy_allowed,
            "phoneNumber": self.phone_number,
            "email": self.email,
        }


class TokenService:
    """Issues JWT access tokens and opaque, single-use refresh tokens.

    Refresh tokens are stored as a keyed SHA-256 digest. Rotation and
    revoke-all serialise on the owning user's row lock, so a refresh racing
    a logout either completes first (and its new token is revoked by the
    logout) or finds its token already revoked.
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = now_utc):
        self.settings = settings
        self.clock = clock
        self.access_ttl = parse_duration(settings.JWT_ACCESS_TTL)
        self.refresh_ttl = parse_duration(settings.JWT_REFRESH_TTL)

    def issue(self, db: Session, user: User, profile: UserProfile | None = None) -> TokenBundle:
        now = self.clock()
        roles = roles_repo.list_for_user(db, user.id)
        role_ids = [r.id for r in roles]
        claims = {
            "sub": user.id,
            "roles": [r.identifier for r in roles],
            "permissions": permissions_repo.identifiers_for_roles(db, role_ids),
            "profileId": profile.id if profile else None,
            "profileIds": [p.id for p in profiles_repo.list_for_user(db, user.id)],
        }
        access_token = create_access_token(self.settings, claims, self.access_ttl, issued_at=now)

        raw_refresh = new_refresh_token()
        refresh_repo.create(
            db,
            user.id,
            hash_refresh_token(self.settings, raw_refresh),
            now + timedelta(seconds=self.refresh_ttl),
        )
        return TokenBundle(
            access_token=access_token,
            refresh_token=raw_refresh,
            expires_in=self.access_ttl,
            user_id=user.id,
            user_profile_id=profile.id if profile else None,
            roles=claims["roles"],
            is_profile_updated=bool(profile and profile.is_profile_updated),
            email_verified=user.email_verified_at is not None,
            phone_verified=user.phone_verified_at is not None,
            is_policy_allowed=bool(user.is_policy_allowed),
            phone_number=user.phone_number,
            email=user.email,
        )

    def consume_refresh_token(self, db: Session, raw_token: str) -> User:
        """Revoke ``raw_token`` and return its owner.

        The revoke is a compare-and-set on a live row. It is flushed before
        the caller issues the replacement, inside the same transaction.
        """
        if not raw_token:
            raise Unauthorized("Invalid refresh token", reason="refresh_unknown")
        token_hash = hash_refresh_token(self.settings, raw_token)
        row = refresh_repo.get_by_hash(db, token_hash)
        if row is None:
            raise Unauthorized("Invalid refresh token", reason="refresh_unknown")

        users_repo.lock(db, row.user_id)
        now = self.clock()
        if not refresh_repo.revoke_if_valid(db, token_hash, now, reason="rotated"):
            db.refresh(row)
            reason = "refresh_revoked" if row.is_revoked else "refresh_expired"
            log.info("refresh_rejected", user_id=row.user_id, reason=reason)
            raise Unauthorized("Invalid refresh token", reason=reason)

        user = users_repo.get_by_id(db, row.user_id)
        if user is None:
            raise Unauthorized("Invalid refresh token", reason="refresh_user_missing")
        log.info("refresh_rotated", user_id=user.id)
        return user

    def revoke_all(self, db: Session, user_id: str, reason: str = "logout") -> int:
        users_repo.lock(db, user_id)
        count = refresh_repo.revoke_all_for_user(db, user_id, self.clock(), reason)
        log.info("refresh_revoked_all", user_id=user_id, count=count, reason=reason)
        return count

    def decode_access_token(self, token: str) -> dict:
        try:
            payload = decode_token(self.settings, token)
        except ExpiredSignatureError:
            raise Unauthorized("Invalid token", reason="token_expired")
        except JWTError:
            raise Unauthorized("Invalid token", reason="token_invalid")
        if payload.get("type") != "access" or not payload.get("sub"):
            raise Unauthorized("Invalid token", reason="token_invalid")
        return payload

    def purge(self, db: Session, retention_days: int) -> dict[str, int]:
        now = self.clock()
        expired = refresh_repo.delete_expired(db, now)
        revoked = refresh_repo.delete_revoked_before(db, now - timedelta(days=retention_days))
        return {"expired": expired, "revoked": revoked}
