from __future__ import annotations
"""SQLAlchemy models for the append-only points ledger and referral bonus grants."""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, DateTime, Numeric, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .view_sessions import ViewSession
from traffic_exchange.database import Base
from .enums import PointsTransactionKind

class PointsLedgerEntry(Base):
    __tablename__ = "points_ledger"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    # Positive for credit, negative for debit
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    kind: Mapped[PointsTransactionKind] = mapped_column(Enum(PointsTransactionKind), nullable=False)
    view_session_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("view_sessions.id"), nullable=True)
    referral_bonus_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("referral_bonuses.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    view_session: Mapped["ViewSession | None"] = relationship("ViewSession")

    __table_args__ = (
        # NULL session refs never collide, so this only binds view_earn rows.
        UniqueConstraint("kind", "view_session_id", name="uq_points_ledger_kind_session"),
        Index("ix_points_ledger_user_kind_created", "user_id", "kind", "created_at"),
    )

class ReferralBonus(Base):
    """One row per referred member; the unique key is the double-grant guard."""
    __tablename__ = "referral_bonuses"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    referred_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    referrer_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    bonus_points: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
