from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Session

from ridefleet.models.refresh_token import RefreshToken


def create(db: Session, user_id: str, token_hash: str, expires_at: datetime) -> RefreshToken:
    row = RefreshToken(user_id=user_id, token_hash=token_hash, expires_at=expires_at)
    db.add(row)
    db.flush()
    return row


def get_by_hash(db: Session, token_hash: str) -> RefreshToken | None:
    return db.execute(sa.select(RefreshToken).where(RefreshToken.token_hash == token_hash)).scalar_one_or_none()


def revoke_if_valid(db: Session, token_hash: str, now: datetime, reason: str) -> bool:
    """Compare-and-set revoke: only a live token flips, and only once."""
    result = db.execute(
        sa.update(RefreshToken)
        .where(
            RefreshToken.token_hash == token_hash,
            RefreshToken.is_revoked.is_(False),
            RefreshToken.expires_at > now,
        )
        .values(is_revoked=True, revoked_at=now, revoked_reason=reason)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


def revoke_all_for_user(db: Session, user_id: str, now: datetime, reason: str) -> int:
    result = db.execute(
        sa.update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
        .values(is_revoked=True, revoked_at=now, revoked_reason=reason)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def count_active_for_user(db: Session, user_id: str, now: datetime) -> int:
    return int(
        db.execute(
            sa.select(sa.func.count(RefreshToken.id)).where(
                RefreshToken.user_id == user_id,
                RefreshToken.is_revoked.is_(False),
                RefreshToken.expires_at > now,
            )
        ).scalar_one()
    )


def delete_expired(db: Session, now: datetime) -> int:
    result = db.execute(
        sa.delete(RefreshToken).where(RefreshToken.expires_at < now).execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def delete_revoked_before(db: Session, cutoff: datetime) -> int:
    result = db.execute(
        sa.delete(RefreshToken)
        .where(RefreshToken.is_revoked.is_(True), RefreshToken.revoked_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
