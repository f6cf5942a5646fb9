"""
SuperClip Backend — Usage Record SQLAlchemy Model
===================================================

What:  ORM model for the `usage_records` table: one running counter per
       `(user_id, usage_type)`.
Who:   DatabaseUsageStore (increments/reads) and Alembic.

Invariants:
    - At most one row per (user_id, usage_type); enforced by a unique constraint
      so two workers racing on the first increment cannot both insert
    - `amount` only changes through `amount = amount + :n` in a single UPDATE
"""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class UsageRecord(Base):
    """Metered usage counter for one user and one usage type."""

    __tablename__ = "usage_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # String (not UUID): usage can be recorded for any identity the token
    # service vouches for, not only rows in `users`
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    usage_type: Mapped[str] = mapped_column(String(64), nullable=False)

    amount: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "usage_type", name="uq_usage_records_user_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageRecord(user_id='{self.user_id}', usage_type='{self.usage_type}', "
            f"amount={self.amount})>"
        )
