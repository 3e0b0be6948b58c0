from __future__ import annotations
"""SQLAlchemy model for exchange members.

Balance columns are projections of the ledgers; only the ledger services
write them, always in the same transaction as the ledger row.
"""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Boolean, Numeric, Enum, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .sites import Site
    from .view_sessions import ViewSession
from sqlalchemy.sql import func
from traffic_exchange.database import Base
from .enums import UserRole

class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    api_key: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), default=UserRole.MEMBER, index=True)

    referral_code: Mapped[str] = mapped_column(String(16), unique=True, index=True)
    # Weak reference: the referrer never owns the referred member.
    referred_by_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    points_balance: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=Decimal("0"), nullable=False)
    earnings_available: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    earnings_locked: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    fraud_flag_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_earning_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    referrer: Mapped["User | None"] = relationship("User", remote_side="User.id")
    sites: Mapped[list["Site"]] = relationship("Site", back_populates="owner")
    view_sessions: Mapped[list["ViewSession"]] = relationship("ViewSession", back_populates="viewer")

    __table_args__ = (
        CheckConstraint("points_balance >= 0", name="points_balance_non_negative"),
        CheckConstraint("earnings_available >= 0", name="earnings_available_non_negative"),
        CheckConstraint("earnings_locked >= 0", name="earnings_locked_non_negative"),
    )
