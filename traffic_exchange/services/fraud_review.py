"""Fraud flag audit trail: listing and reviewer resolution."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from traffic_exchange.models.db.fraud_flags import FraudFlag
from traffic_exchange.models.db.enums import FraudSeverity
from traffic_exchange.services.errors import Conflict, NotFound
from traffic_exchange.utils import get_logger, log_business_event
from traffic_exchange.utils.time import ensure_utc, utc_now

logger = get_logger(__name__)


def list_fraud_flags(
    db: Session,
    *,
    user_id: Optional[int] = None,
    resolved: Optional[bool] = None,
    severity: Optional[FraudSeverity] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[FraudFlag]:
    stmt = select(FraudFlag)
    if user_id is not None:
        stmt = stmt.where(FraudFlag.user_id == user_id)
    if resolved is not None:
        stmt = stmt.where(FraudFlag.is_resolved.is_(resolved))
    if severity is not None:
        stmt = stmt.where(FraudFlag.severity == severity)
    stmt = stmt.order_by(FraudFlag.created_at.desc(), FraudFlag.id.desc()).limit(limit).offset(offset)
    return list(db.execute(stmt).scalars())


def resolve_fraud_flag(
    db: Session,
    flag_id: int,
    *,
    reviewer: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    request_id: Optional[str] = None,
) -> FraudFlag:
    now = ensure_utc(now or utc_now())
    result = db.execute(
        update(FraudFlag)
        .where(FraudFlag.id == flag_id, FraudFlag.is_resolved.is_(False))
        .values(is_resolved=True, resolved_by=reviewer, resolved_at=now, resolution_notes=notes)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        if db.get(FraudFlag, flag_id) is None:
            raise NotFound(f"Fraud flag {flag_id} not found", code="fraud_flag_not_found")
        raise Conflict(f"Fraud flag {flag_id} already resolved", code="fraud_flag_already_resolved")
    db.commit()

    flag = db.get(FraudFlag, flag_id)
    log_business_event(
        event_type="fraud_flag_resolved",
        details={"flag_id": flag_id, "reviewer": reviewer, "reason_code": flag.reason_code.value},
        user_id=flag.user_id,
        request_id=request_id,
    )
    return flag


__all__ = ["list_fraud_flags", "resolve_fraud_flag"]
