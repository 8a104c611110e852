"""
Authentication orchestrator.

One instance per request. Every public method is a unit of work: it commits
on success, rolls back and re-raises domain errors on failure, and returns
the ``{success, message, data}`` envelope.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from ridefleet.core.config import Settings
from ridefleet.core.constants import DEFAULT_ROLE, OAUTH_PROVIDERS, AuthProvider, is_known_role
from ridefleet.core.errors import NotFound, ProviderError, Unauthorized, ValidationFailed
from ridefleet.core.logging import get_logger
from ridefleet.core.security import now_utc, verify_password
from ridefleet.models.user import User
from ridefleet.repositories import credentials as credentials_repo
from ridefleet.repositories import profiles as profiles_repo
from ridefleet.repositories import roles as roles_repo
from ridefleet.repositories import users as users_repo
from ridefleet.services.audit import audit, contact_entity_id
from ridefleet.services.identity import IdentityResolver, normalize_email, normalize_phone, set_password
from ridefleet.services.notifications import NotificationDispatcher, Recipient, dispatch_safely
from ridefleet.services.oauth import OAuthVerifierProtocol
from ridefleet.services.otp import OtpService
from ridefleet.services.roles import ensure_role_and_profile
from ridefleet.services.tokens import TokenService

log = get_logger(__name__)

MIN_PASSWORD_LENGTH = 8


def envelope(message: str, data=None, success: bool = True) -> dict:
    return {"success": success, "message": message, "data": data}


def _require_role(role: str | None) -> str:
    if not is_known_role(role):
        raise ValidationFailed("Invalid app type")
    return role


def _contact_data(channel: str, identifier: str) -> dict:
    return {"phoneNumber" if channel == "phone" else "email": identifier}


class AuthService:
    def __init__(
        self,
        db: Session,
        settings: Settings,
        oauth_verifier: OAuthVerifierProtocol,
        notifier: NotificationDispatcher,
        otp: OtpService | None = None,
        tokens: TokenService | None = None,
        identity: IdentityResolver | None = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.db = db
        self.settings = settings
        self.oauth_verifier = oauth_verifier
        self.notifier = notifier
        self.otp = otp or OtpService(settings, clock=clock)
        self.tokens = tokens or TokenService(settings, clock=clock)
        self.identity = identity or IdentityResolver(clock=clock)
        self._outbox: list[tuple[str, list[Recipient], dict]] = []

    @contextmanager
    def _unit_of_work(self):
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            self._outbox.clear()
            raise
        # Notifications go out only once the code they carry is committed.
        pending, self._outbox = self._outbox, []
        for template_id, recipients, variables in pending:
            dispatch_safely(self.notifier, template_id, recipients, variables)

    def _contact(self, channel: str, identifier: str | None) -> str:
        return normalize_phone(identifier) if channel == "phone" else normalize_email(identifier)

    def _template(self, channel: str) -> str:
        if channel == "phone":
            return self.settings.NOTIFY_PHONE_OTP_TEMPLATE
        return self.settings.NOTIFY_EMAIL_OTP_TEMPLATE

    def _send_code(self, channel: str, identifier: str, template_id: str | None = None) -> dict:
        issued = self.otp.issue(self.db, channel, identifier)
        recipient = Recipient(
            identifier=issued.user.id,
            email=identifier if channel == "email" else None,
            phone_number=identifier if channel == "phone" else None,
        )
        self._outbox.append((template_id or self._template(channel), [recipient], {"otp": issued.code}))
        audit(
            self.db,
            issued.user.id,
            "auth",
            contact_entity_id(self.settings, channel, identifier),
            "otp_requested",
            {"channel": channel},
        )
        data = _contact_data(channel, identifier)
        if self.settings.ENV == "dev":
            data["devCode"] = issued.code
        return data

    def _verify_for_login(
        self, channel: str, identifier: str, code: str, consume: bool = True, stamp: bool = True
    ) -> User:
        if not code:
            raise ValidationFailed("OTP is required")
        try:
            return self.otp.verify(self.db, channel, identifier, code, consume=consume, stamp=stamp)
        except Unauthorized as exc:
            log.info("login_rejected", channel=channel, reason=exc.reason)
            raise Unauthorized("Invalid credentials", reason=exc.reason)

    def _require_password_role(self, role: str) -> None:
        if role not in self.settings.password_login_roles:
            raise ValidationFailed("Password authentication is not available for this app type")

    def _login_result(self, user: User, role: str, channel: str) -> dict:
        binding = ensure_role_and_profile(self.db, user.id, role)
        bundle = self.tokens.issue(self.db, user, binding.profile)
        audit(self.db, user.id, "auth", user.id, "login", {"channel": channel, "role": role})
        log.info("login_succeeded", channel=channel, user_id=user.id, role=role)
        return bundle.as_dict()

    def register_with_phone(self, phone_number: str, role: str) -> dict:
        role = _require_role(role)
        phone = normalize_phone(phone_number)
        with self._unit_of_work():
            user = self.identity.register_with_contact(self.db, "phone", phone, role)
            audit(self.db, user.id, "user", user.id, "registered", {"channel": "phone", "role": role})
            data = self._send_code("phone", phone)
        return envelope("OTP sent successfully", data)

    def register_with_email(self, email: str, role: str) -> dict:
        role = _require_role(role)
        if role not in self.settings.email_signup_roles:
            raise ValidationFailed("Email authentication is only available for riders")
        address = normalize_email(email)
        with self._unit_of_work():
            user = self.identity.register_with_contact(self.db, "email", address, role)
            audit(self.db, user.id, "user", user.id, "registered", {"channel": "email", "role": role})
            data = self._send_code("email", address)
        return envelope("OTP sent successfully", data)

    def send_otp(self, channel: str, identifier: str) -> dict:
        value = self._contact(channel, identifier)
        with self._unit_of_work():
            # Same answer whether or not the contact is registered.
            if users_repo.get_by_contact(self.db, channel, value) is None:
                log.info("otp_resend_unknown_contact", channel=channel)
                data = _contact_data(channel, value)
            else:
                data = self._send_code(channel, value)
        return envelope("OTP sent successfully", data)

    def verify_otp(self, channel: str, identifier: str, otp: str) -> dict:
        value = self._contact(channel, identifier)
        with self._unit_of_work():
            self._verify_for_login(channel, value, otp)
        return envelope("OTP verified successfully", {"verified": True})

    def login_with_phone(self, phone_number: str, otp: str, role: str) -> dict:
        role = _require_role(role)
        phone = normalize_phone(phone_number)
        with self._unit_of_work():
            user = self._verify_for_login("phone", phone, otp)
            data = self._login_result(user, role, "phone")
        return envelope("Login successful", data)

    def login_with_email(self, email: str, otp: str, role: str) -> dict:
        role = _require_role(role)
        if role not in self.settings.email_signup_roles:
            raise ValidationFailed("Email authentication is only available for riders")
        address = normalize_email(email)
        with self._unit_of_work():
            user = self._verify_for_login("email", address, otp)
            data = self._login_result(user, role, "email")
        return envelope("Login successful", data)

    def login_with_oauth(self, provider: str, token: str, role: str | None = None) -> dict:
        if role is not None:
            role = _require_role(role)
        if provider not in {p.value for p in OAUTH_PROVIDERS}:
            raise ValidationFailed("Unsupported OAuth provider")
        try:
            identity = self.oauth_verifier.verify(provider, token)
        except ProviderError:
            log.warning("oauth_provider_unavailable", provider=provider)
            raise
        with self._unit_of_work():
            user = self.identity.resolve_oauth_user(self.db, identity, role)
            role = role or _first_role(self.db, user.id) or DEFAULT_ROLE.value
            data = self._login_result(user, role, provider)
        return envelope("Login successful", data)

    def login_with_password(self, email: str, password: str, role: str) -> dict:
        role = _require_role(role)
        self._require_password_role(role)
        address = normalize_email(email)
        with self._unit_of_work():
            user = users_repo.get_by_email(self.db, address)
            cred = credentials_repo.get_for_user(self.db, user.id, AuthProvider.PASSWORD.value) if user else None
            if not cred or not cred.secret_hash or not verify_password(password or "", cred.secret_hash):
                log.info("login_rejected", channel="password", reason="bad_credentials")
                raise Unauthorized("Invalid credentials", reason="password_invalid")

            profile = profiles_repo.get_for_role_identifier(self.db, user.id, role)
            if profile is None or profile.status != "active":
                profile = profiles_repo.first_active(self.db, user.id)
            if profile is None:
                raise Unauthorized("Account is not active", reason="profile_inactive")

            bundle = self.tokens.issue(self.db, user, profile)
            audit(self.db, user.id, "auth", user.id, "login", {"channel": "password", "role": role})
            data = bundle.as_dict()
        return envelope("Login successful", data)

    def refresh_token(self, refresh_token: str, role: str | None = None) -> dict:
        if role is not None:
            role = _require_role(role)
        with self._unit_of_work():
            user = self.tokens.consume_refresh_token(self.db, refresh_token)
            if role:
                profile = profiles_repo.get_for_role_identifier(self.db, user.id, role)
                if profile is None:
                    raise Unauthorized("Invalid refresh token", reason="refresh_role_missing")
            else:
                first = _first_role(self.db, user.id)
                profile = profiles_repo.get_for_role_identifier(self.db, user.id, first) if first else None
            bundle = self.tokens.issue(self.db, user, profile)
            audit(self.db, user.id, "auth", user.id, "refresh_rotated", {"role": role})
            data = bundle.as_dict()
        return envelope("Token refreshed successfully", data)

    def logout(self, user_id: str) -> dict:
        with self._unit_of_work():
            count = self.tokens.revoke_all(self.db, user_id, reason="logout")
            audit(self.db, user_id, "auth", user_id, "logout", {"revoked": count})
        return envelope("Logged out successfully", {"revoked": count})

    def send_forgot_password_otp(self, email: str, role: str) -> dict:
        role = _require_role(role)
        self._require_password_role(role)
        address = normalize_email(email)
        with self._unit_of_work():
            # Same answer whether or not the address exists.
            if users_repo.get_by_email(self.db, address):
                self._send_code("email", address, template_id=self.settings.NOTIFY_FORGOT_PASSWORD_TEMPLATE)
        return envelope("If the account exists, a reset code has been sent", None)

    def verify_forgot_password_otp(self, email: str, otp: str, role: str) -> dict:
        role = _require_role(role)
        self._require_password_role(role)
        address = normalize_email(email)
        with self._unit_of_work():
            self._verify_for_login("email", address, otp, consume=False, stamp=False)
        return envelope("OTP verified successfully", {"verified": True})

    def reset_password(self, email: str, otp: str, new_password: str, role: str) -> dict:
        role = _require_role(role)
        self._require_password_role(role)
        if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        address = normalize_email(email)
        with self._unit_of_work():
            user = self._verify_for_login("email", address, otp)
            set_password(self.db, user, new_password, rounds=self.settings.PASSWORD_BCRYPT_ROUNDS)
            revoked = self.tokens.revoke_all(self.db, user.id, reason="password_reset")
            audit(self.db, user.id, "auth", user.id, "password_reset", {"revoked": revoked})
        return envelope("Password reset successfully", None)

    def get_me(self, user_id: str, role: str | None = None) -> dict:
        user = users_repo.get_by_id(self.db, user_id)
        if user is None:
            raise NotFound("User not found")
        roles = [r.identifier for r in roles_repo.list_for_user(self.db, user.id)]
        profile = None
        if role:
            profile = profiles_repo.get_for_role_identifier(self.db, user.id, _require_role(role))
        data = {
            "id": user.id,
            "email": user.email,
            "phoneNumber": user.phone_number,
            "emailVerified": user.email_verified_at is not None,
            "phoneVerified": user.phone_verified_at is not None,
            "isPolicyAllowed": bool(user.is_policy_allowed),
            "roles": roles,
            "profile": None,
        }
        if profile is not None:
            data["profile"] = {
                "id": profile.id,
                "firstName": profile.first_name,
                "lastName": profile.last_name,
                "status": profile.status,
                "isProfileUpdated": profile.is_profile_updated,
            }
        return envelope("User fetched successfully", data)


def _first_role(db: Session, user_id: str) -> str | None:
    held = roles_repo.list_for_user(db, user_id)
    return held[0].identifier if held else None
