import hashlib
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import jwt

from ridefleet.core.config import Settings


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def pii_hash(settings: Settings, value: str, purpose: str = "pii") -> str:
    raw = (settings.PII_PEPPER + ":" + purpose + ":" + value).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def create_access_token(settings: Settings, claims: dict, ttl_seconds: int, issued_at: datetime | None = None) -> str:
    iat = issued_at or now_utc()
    payload = dict(claims)
    payload["type"] = "access"
    payload["iat"] = int(iat.timestamp())
    payload["exp"] = int((iat + timedelta(seconds=ttl_seconds)).timestamp())
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(settings: Settings, token: str) -> dict:
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


def new_refresh_token() -> str:
    # 40 random bytes, hex encoded; opaque to clients
    return secrets.token_hex(40)


def hash_refresh_token(settings: Settings, token: str) -> str:
    raw = (settings.JWT_SECRET + ":" + token).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def hash_password(password: str, rounds: int = 12) -> str:
    raw = password.encode("utf-8")
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False
