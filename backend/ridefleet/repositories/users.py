from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Session

from ridefleet.core.security import now_utc
from ridefleet.models.user import User


def _scoped(stmt, include_deleted: bool):
    if not include_deleted:
        stmt = stmt.where(User.deleted_at.is_(None))
    return stmt


def get_by_id(db: Session, user_id: str, include_deleted: bool = False) -> User | None:
    stmt = _scoped(sa.select(User).where(User.id == user_id), include_deleted)
    return db.execute(stmt).scalar_one_or_none()


def get_by_email(db: Session, email: str, include_deleted: bool = False) -> User | None:
    stmt = _scoped(sa.select(User).where(User.email == email), include_deleted)
    return db.execute(stmt).scalar_one_or_none()


def get_by_phone(db: Session, phone_number: str, include_deleted: bool = False) -> User | None:
    stmt = _scoped(sa.select(User).where(User.phone_number == phone_number), include_deleted)
    return db.execute(stmt).scalar_one_or_none()


def get_by_contact(db: Session, channel: str, value: str, include_deleted: bool = False) -> User | None:
    if channel == "phone":
        return get_by_phone(db, value, include_deleted)
    return get_by_email(db, value, include_deleted)


def email_owned_by_other(db: Session, email: str, user_id: str) -> bool:
    # Soft-deleted rows still hold the unique index, so they count.
    row = db.execute(
        sa.select(User.id).where(User.email == email, User.id != user_id).limit(1)
    ).first()
    return row is not None


def create(db: Session, **fields) -> User:
    user = User(**fields)
    db.add(user)
    db.flush()
    return user


def restore(db: Session, user: User) -> User:
    user.deleted_at = None
    db.flush()
    return user


def soft_delete(db: Session, user: User, at: datetime | None = None) -> User:
    user.deleted_at = at or now_utc()
    db.flush()
    return user


def lock(db: Session, user_id: str) -> bool:
    """Take the user's row lock for the rest of the transaction.

    An UPDATE locks on every backend, unlike SELECT ... FOR UPDATE which
    SQLite ignores. Token rotation and revoke-all serialise on this row.
    """
    result = db.execute(
        sa.update(User).where(User.id == user_id).values(updated_at=now_utc()).execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0


def clear_expired_otp_secrets(db: Session, now: datetime) -> int:
    result = db.execute(
        sa.update(User)
        .where(User.otp_secret.is_not(None), User.otp_expires_at < now)
        .values(otp_secret=None, otp_expires_at=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def consume_otp_secret(db: Session, user_id: str, secret: str) -> bool:
    """Clear the OTP secret only if it is still ``secret``.

    False means another transaction consumed or replaced it first.
    """
    result = db.execute(
        sa.update(User)
        .where(User.id == user_id, User.otp_secret == secret)
        .values(otp_secret=None, otp_expires_at=None)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0
