from __future__ import annotations
"""SQLAlchemy model for view sessions (one claimed viewing of a site).

Rows are never deleted: they are the audit trail and the history the
rate limiter's indexes serve.
"""
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Text, DateTime, Numeric, Enum, ForeignKey, Index
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .users import User
    from .sites import Site
from traffic_exchange.database import Base
from .enums import ViewSessionState, RejectionReason

class ViewSession(Base):
    __tablename__ = "view_sessions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    session_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    viewer_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    site_id: Mapped[int] = mapped_column(Integer, ForeignKey("sites.id"), nullable=False, index=True)

    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    state: Mapped[ViewSessionState] = mapped_column(Enum(ViewSessionState), default=ViewSessionState.PENDING, nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    points_awarded: Mapped[Decimal | None] = mapped_column(Numeric(10, 4), nullable=True)
    fraud_reason: Mapped[RejectionReason | None] = mapped_column(Enum(RejectionReason), nullable=True)

    viewer: Mapped["User"] = relationship("User", back_populates="view_sessions")
    site: Mapped["Site"] = relationship("Site")

    __table_args__ = (
        Index("ix_view_sessions_ip_completed", "ip_address", "completed_at"),
        Index("ix_view_sessions_viewer_completed", "viewer_id", "completed_at"),
    )
