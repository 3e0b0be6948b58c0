from __future__ import annotations
"""Per-key rate limiter state.

One row per IP and one per (user, day). The rate limiter admits by a
conditional UPDATE against these rows, which makes the row itself the
serialization point for its key.
"""
from datetime import date, datetime
from decimal import Decimal
from sqlalchemy import Integer, String, Date, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from traffic_exchange.database import Base

class IpCooldownSlot(Base):
    __tablename__ = "ip_cooldown_slots"
    ip_address: Mapped[str] = mapped_column(String(45), primary_key=True)
    # Completion time of the last credited view from this IP.
    last_valid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    view_session_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("view_sessions.id"), nullable=True)

class DailyEarningCounter(Base):
    __tablename__ = "daily_earning_counters"
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), primary_key=True)
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    points_total: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=Decimal("0"), nullable=False)
