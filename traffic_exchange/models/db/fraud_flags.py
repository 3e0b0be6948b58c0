from __future__ import annotations
"""SQLAlchemy model for fraud audit flags raised by the validation pipeline."""
from datetime import datetime
from sqlalchemy import Integer, String, Text, DateTime, Boolean, Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from traffic_exchange.database import Base
from .enums import FraudSeverity, RejectionReason

class FraudFlag(Base):
    __tablename__ = "fraud_flags"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    view_session_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("view_sessions.id"), nullable=True)
    reason_code: Mapped[RejectionReason] = mapped_column(Enum(RejectionReason), nullable=False)
    severity: Mapped[FraudSeverity] = mapped_column(Enum(FraudSeverity), default=FraudSeverity.LOW, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Only an external reviewer touches these.
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_fraud_flags_user_severity", "user_id", "severity"),
    )
