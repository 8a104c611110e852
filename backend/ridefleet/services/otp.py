from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

import pyotp
from sqlalchemy.orm import Session

from ridefleet.core.config import Settings
from ridefleet.core.errors import NotFound, Unauthorized
from ridefleet.core.logging import get_logger
from ridefleet.core.security import now_utc
from ridefleet.models.user import User
from ridefleet.repositories import users as users_repo

log = get_logger(__name__)

CHANNELS = ("phone", "email")


@dataclass(frozen=True)
class IssuedOtp:
    user: User
    code: str
    expires_at: datetime


class OtpService:
    """Time-step one-time codes stored as a per-user secret.

    Only the secret is persisted. A fresh secret is generated on every
    issue, so issuing again invalidates any earlier code.
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = now_utc):
        self.settings = settings
        self.clock = clock

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=self.settings.OTP_DIGITS, interval=self.settings.OTP_STEP_SECONDS)

    def _lookup(self, db: Session, channel: str, identifier: str) -> User | None:
        if channel not in CHANNELS:
            raise ValueError(f"Unknown OTP channel '{channel}'")
        return users_repo.get_by_contact(db, channel, identifier)

    def _is_bypass(self, code: str) -> bool:
        return self.settings.otp_bypass_active and code == self.settings.OTP_BYPASS_CODE

    def issue(self, db: Session, channel: str, identifier: str) -> IssuedOtp:
        user = self._lookup(db, channel, identifier)
        if not user:
            raise NotFound("User not found")

        now = self.clock()
        secret = pyotp.random_base32()
        code = self._totp(secret).at(now)
        lifetime = self.settings.OTP_STEP_SECONDS * (self.settings.OTP_VALID_WINDOW + 1)
        user.otp_secret = secret
        user.otp_expires_at = now + timedelta(seconds=lifetime)
        db.flush()
        log.info("otp_issued", channel=channel, user_id=user.id)
        return IssuedOtp(user=user, code=code, expires_at=user.otp_expires_at)

    def verify(
        self, db: Session, channel: str, identifier: str, code: str, consume: bool = True, stamp: bool = True
    ) -> User:
        """Check ``code`` for the user behind ``identifier``.

        Raises ``Unauthorized`` on any failure. On success the channel's
        verified-at timestamp is stamped (unless ``stamp`` is off) and, when
        ``consume`` is set, the secret is cleared so the code cannot be
        replayed. Consumption is a conditional UPDATE on the secret that was
        checked, so of two concurrent requests with the same code only one
        succeeds.
        """
        user = self._lookup(db, channel, identifier)
        if not user:
            raise Unauthorized("Invalid verification attempt", reason="otp_user_missing")

        now = self.clock()
        secret = user.otp_secret
        if self._is_bypass(code):
            log.warning("otp_bypass_used", channel=channel, user_id=user.id)
        else:
            if not secret:
                raise Unauthorized("Invalid verification attempt", reason="otp_missing")
            if user.otp_expires_at is None or now > user.otp_expires_at:
                raise Unauthorized("Invalid or expired OTP", reason="otp_expired")
            totp = self._totp(secret)
            if not totp.verify(str(code), for_time=now, valid_window=self.settings.OTP_VALID_WINDOW):
                raise Unauthorized("Invalid or expired OTP", reason="otp_invalid")

        if consume:
            if secret and not users_repo.consume_otp_secret(db, user.id, secret):
                log.info("otp_already_consumed", channel=channel, user_id=user.id)
                raise Unauthorized("Invalid verification attempt", reason="otp_missing")
            user.otp_secret = None
            user.otp_expires_at = None
        if stamp:
            if channel == "phone":
                user.phone_verified_at = now
            else:
                user.email_verified_at = now
        db.flush()
        log.info("otp_verified", channel=channel, user_id=user.id, consumed=consume)
        return user
