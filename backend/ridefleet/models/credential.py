from datetime import datetime
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ridefleet.core.security import now_utc
from ridefleet.db.base import Base
from ridefleet.db.types import UTCDateTime


class AuthCredential(Base):
    __tablename__ = "auth_credentials"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    provider: Mapped[str] = mapped_column(sa.Text, nullable=False)  # phone/email/password/google/apple
    identifier: Mapped[str] = mapped_column(sa.Text, nullable=False)
    secret_hash: Mapped[str | None] = mapped_column(sa.Text, nullable=True)  # bcrypt, password provider only
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column(
        "metadata", MutableDict.as_mutable(sa.JSON), nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=now_utc, server_default=sa.func.now())
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=now_utc, onupdate=now_utc, server_default=sa.func.now()
    )

    __table_args__ = (
        sa.UniqueConstraint("provider", "identifier", name="uq_auth_credentials_provider_identifier"),
        sa.UniqueConstraint("user_id", "provider", name="uq_auth_credentials_user_provider"),
    )

    user = relationship("User", back_populates="credentials")
