from __future__ import annotations
"""SQLAlchemy model for monetary earnings and their holding period."""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Integer, DateTime, Numeric, Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from traffic_exchange.database import Base
from .enums import EarningsStatus, EarningsSource

class EarningsLedgerEntry(Base):
    __tablename__ = "earnings_ledger"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[EarningsStatus] = mapped_column(Enum(EarningsStatus), default=EarningsStatus.LOCKED, nullable=False)
    source: Mapped[EarningsSource] = mapped_column(Enum(EarningsSource), nullable=False)
    # Fixed at creation (creation time + holding period); never recomputed.
    unlock_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    unlocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    withdrawn_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Remainder of a partially withdrawn entry points back at its parent.
    split_from_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("earnings_ledger.id"), nullable=True)

    __table_args__ = (
        Index("ix_earnings_unlock_status", "unlock_at", "status"),
        Index("ix_earnings_user_status", "user_id", "status"),
    )
