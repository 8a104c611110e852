from datetime import datetime
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ridefleet.core.security import now_utc
from ridefleet.db.base import Base
from ridefleet.db.types import UTCDateTime


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    first_name: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    last_name: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False, default="active", server_default="active")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=now_utc, server_default=sa.func.now())
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=now_utc, onupdate=now_utc, server_default=sa.func.now()
    )

    __table_args__ = (
        sa.UniqueConstraint("user_id", "role_id", name="uq_user_profiles_user_role"),
        sa.CheckConstraint("status in ('active','inactive','suspended')", name="ck_user_profiles_status"),
    )

    user = relationship("User", back_populates="profiles")

    @property
    def is_profile_updated(self) -> bool:
        return bool(self.first_name) and bool(self.last_name)
