"""
Identity and credential resolution.

Maps a verified channel identifier (phone, email, or an OAuth subject) to a
single User row, creating, restoring or linking records as needed. Nothing
here commits; callers own the transaction.
"""

import re
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from ridefleet.core.constants import DEFAULT_ROLE, AuthProvider
from ridefleet.core.errors import Conflict, ValidationFailed
from ridefleet.core.logging import get_logger
from ridefleet.core.security import hash_password, now_utc
from ridefleet.models.credential import AuthCredential
from ridefleet.models.user import User
from ridefleet.repositories import credentials as credentials_repo
from ridefleet.repositories import users as users_repo
from ridefleet.services.audit import audit
from ridefleet.services.oauth import OAuthIdentity
from ridefleet.services.roles import assign_role

log = get_logger(__name__)

_E164_RE = re.compile(r"^\+[1-9]\d{6,14}$")


def normalize_phone(phone_number: str | None) -> str:
    raw = (phone_number or "").strip()
    if not raw:
        raise ValidationFailed("Phone number is required")
    if not raw.startswith("+"):
        raw = "+" + raw
    normalized = "+" + "".join(ch for ch in raw if ch.isdigit())
    if not _E164_RE.match(normalized):
        raise ValidationFailed("Invalid phone number")
    return normalized


def normalize_email(email: str | None) -> str:
    raw = (email or "").strip().lower()
    if not raw or "@" not in raw or "." not in raw.split("@")[-1]:
        raise ValidationFailed("Invalid email")
    return raw


class IdentityResolver:
    def __init__(self, clock: Callable[[], datetime] = now_utc):
        self.clock = clock

    def register_with_contact(self, db: Session, channel: str, identifier: str, role: str) -> User:
        """Find, restore or create the user behind a phone/email identifier."""
        user = None
        cred = credentials_repo.get(db, channel, identifier)
        if cred:
            user = users_repo.get_by_id(db, cred.user_id, include_deleted=True)

        if user is None:
            # A user may hold the contact without a credential row (e.g. seeded admins).
            user = users_repo.get_by_contact(db, channel, identifier, include_deleted=True)
            if user is None:
                fields = {"phone_number": identifier} if channel == "phone" else {"email": identifier}
                user = users_repo.create(db, **fields)
                log.info("user_created", channel=channel, user_id=user.id)
            if cred is None:
                # One credential per provider: the contact may have moved (OAuth email rotation).
                existing = credentials_repo.get_for_user(db, user.id, channel)
                if existing:
                    existing.identifier = identifier
                else:
                    credentials_repo.create(db, user.id, channel, identifier)

        if user.is_deleted:
            users_repo.restore(db, user)
            log.info("user_restored", channel=channel, user_id=user.id)
        if channel == "phone" and user.phone_number is None:
            user.phone_number = identifier
        elif channel == "email" and user.email is None:
            user.email = identifier
        db.flush()

        assign_role(db, user.id, role)
        return user

    def resolve_oauth_user(self, db: Session, identity: OAuthIdentity, role: str | None = None) -> User:
        # Validate before touching the database: no partial writes.
        if not identity.external_id:
            raise ValidationFailed("Provider user ID is required for OAuth registration")
        if not identity.email:
            raise ValidationFailed("Email is required for OAuth registration")
        email = normalize_email(identity.email)

        cred = credentials_repo.get(db, identity.provider, identity.external_id)
        if cred:
            user = users_repo.get_by_id(db, cred.user_id, include_deleted=True)
            if user is not None:
                self._apply_email_rotation(db, user, cred, identity, email)
                if user.is_deleted:
                    users_repo.restore(db, user)
                return user

        user = users_repo.get_by_email(db, email, include_deleted=True)
        if user:
            self._link_oauth(db, user, identity, email)
            if user.is_deleted:
                users_repo.restore(db, user)
            return user

        return self._create_oauth_user(db, identity, email, role or DEFAULT_ROLE.value)

    def _metadata(self, identity: OAuthIdentity, email: str, **extra) -> dict:
        meta = {
            "currentEmail": email,
            "emailHistory": [email],
            "provider": identity.provider,
            "isPrivateEmail": identity.is_private_email,
            "realUserStatus": identity.real_user_status or "unknown",
        }
        meta.update(extra)
        return meta

    def _apply_email_rotation(
        self, db: Session, user: User, cred: AuthCredential, identity: OAuthIdentity, email: str
    ) -> None:
        meta = dict(cred.meta or {})
        previous = meta.get("currentEmail") or user.email
        if previous == email:
            return

        if users_repo.email_owned_by_other(db, email, user.id):
            log.warning("oauth_email_conflict", provider=identity.provider, user_id=user.id)
            raise Conflict("Email is already associated with another account")

        was_private = bool(meta.get("isPrivateEmail"))
        if identity.provider == AuthProvider.APPLE.value and was_private and not identity.is_private_email:
            log.warning("apple_private_email_revealed", user_id=user.id)

        now = self.clock()
        user.email = email
        user.email_verified_at = now

        history = list(meta.get("emailHistory") or ([previous] if previous else []))
        if email not in history:
            history.append(email)
        meta.update(
            currentEmail=email,
            emailHistory=history,
            lastEmailUpdate=now.isoformat(),
            provider=identity.provider,
            isPrivateEmail=identity.is_private_email,
            realUserStatus=identity.real_user_status or "unknown",
        )
        cred.meta = meta
        audit(
            db,
            user.id,
            "user",
            user.id,
            "oauth_email_rotated",
            {"provider": identity.provider, "history_size": len(history), "is_private_email": identity.is_private_email},
        )
        db.flush()
        log.info("oauth_email_rotated", provider=identity.provider, user_id=user.id)

    def _link_oauth(self, db: Session, user: User, identity: OAuthIdentity, email: str) -> None:
        now = self.clock()
        existing = credentials_repo.get_for_user(db, user.id, identity.provider)
        if existing:
            existing.identifier = identity.external_id
            existing.meta = self._metadata(
                identity, email, linkedAt=now.isoformat(), lastEmailUpdate=now.isoformat()
            )
        else:
            credentials_repo.create(
                db,
                user.id,
                identity.provider,
                identity.external_id,
                meta=self._metadata(identity, email, linkedAt=now.isoformat()),
            )
        if user.email != email or user.email_verified_at is None:
            user.email = email
            user.email_verified_at = now
        db.flush()
        log.info("oauth_linked", provider=identity.provider, user_id=user.id)

    def _create_oauth_user(self, db: Session, identity: OAuthIdentity, email: str, role: str) -> User:
        now = self.clock()
        user = users_repo.create(db, email=email, email_verified_at=now)
        credentials_repo.create(
            db,
            user.id,
            identity.provider,
            identity.external_id,
            meta=self._metadata(identity, email, registeredAt=now.isoformat(), name=identity.display_name),
        )
        assign_role(db, user.id, role)
        log.info("user_created", channel=identity.provider, user_id=user.id)
        return user


def set_password(db: Session, user: User, password: str, rounds: int = 12) -> AuthCredential:
    """Create or replace the user's password credential."""
    digest = hash_password(password, rounds=rounds)
    cred = credentials_repo.get_for_user(db, user.id, AuthProvider.PASSWORD.value)
    if cred:
        cred.secret_hash = digest
        db.flush()
        return cred
    return credentials_repo.create(db, user.id, AuthProvider.PASSWORD.value, user.id, secret_hash=digest)
