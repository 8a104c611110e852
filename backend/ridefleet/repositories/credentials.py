import sqlalchemy as sa
from sqlalchemy.orm import Session

from ridefleet.models.credential import AuthCredential


def get(db: Session, provider: str, identifier: str) -> AuthCredential | None:
    return db.execute(
        sa.select(AuthCredential).where(
            AuthCredential.provider == provider,
            AuthCredential.identifier == identifier,
        )
    ).scalar_one_or_none()


def get_for_user(db: Session, user_id: str, provider: str) -> AuthCredential | None:
    return db.execute(
        sa.select(AuthCredential).where(
            AuthCredential.user_id == user_id,
            AuthCredential.provider == provider,
        )
    ).scalar_one_or_none()


def create(
    db: Session,
    user_id: str,
    provider: str,
    identifier: str,
    meta: dict | None = None,
    secret_hash: str | None = None,
) -> AuthCredential:
    cred = AuthCredential(
        user_id=user_id,
        provider=provider,
        identifier=identifier,
        meta=dict(meta or {}),
        secret_hash=secret_hash,
    )
    db.add(cred)
    db.flush()
    return cred
