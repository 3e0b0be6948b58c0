"""
Admin endpoints: earnings locking, unlock sweeps, point adjustments, fraud review.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, Query
from sqlalchemy.orm import Session
from traffic_exchange.api.deps import get_db, require_admin, get_pagination_params
from traffic_exchange.models.db import User
from traffic_exchange.models.db.enums import FraudSeverity
from traffic_exchange.models.schemas.ledger import (
    LockEarningsRequest, EarningsEntryRead, UnlockSweepResponse, PointsAdjustRequest, PointsEntryRead, BalanceCheckRead
)
from traffic_exchange.models.schemas.fraud import FraudFlagRead, FraudFlagResolve
from traffic_exchange.services import earnings_ledger, fraud_review, points_ledger
from traffic_exchange.utils import get_logger
from traffic_exchange.utils.time import utc_now

router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "/earnings/lock",
    response_model=EarningsEntryRead,
    status_code=201,
    summary="Record locked earnings for a member"
)
def lock_earnings(
    payload: LockEarningsRequest,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> EarningsEntryRead:
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info(
        "Admin locking earnings",
        admin_id=admin.id,
        user_id=payload.user_id,
        amount=payload.amount,
        source=payload.source.value,
        request_id=request_id
    )
    entry = earnings_ledger.lock_earnings(db, payload.user_id, payload.amount, payload.source, request_id=request_id)
    return EarningsEntryRead.model_validate(entry)

@router.post(
    "/earnings/unlock-sweep",
    response_model=UnlockSweepResponse,
    summary="Run the earnings unlock sweep now"
)
def run_unlock_sweep(
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> UnlockSweepResponse:
    as_of = utc_now()
    unlocked = earnings_ledger.unlock_due_earnings(db, now=as_of)
    logger.info(
        "Manual unlock sweep completed",
        admin_id=admin.id,
        unlocked=unlocked,
        request_id=request.headers.get("X-Request-ID", "unknown")
    )
    return UnlockSweepResponse(unlocked=unlocked, as_of=as_of)

@router.post(
    "/points/adjust",
    response_model=PointsEntryRead,
    status_code=201,
    summary="Apply a signed admin adjustment to a member's points"
)
def adjust_points(
    payload: PointsAdjustRequest,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> PointsEntryRead:
    request_id = request.headers.get("X-Request-ID", "unknown")
    logger.info(
        "Admin points adjustment",
        admin_id=admin.id,
        user_id=payload.user_id,
        amount=payload.amount,
        request_id=request_id
    )
    entry = points_ledger.adjust_points(db, payload.user_id, payload.amount, request_id=request_id)
    return PointsEntryRead.model_validate(entry)

@router.get(
    "/users/{user_id}/balance-check",
    response_model=BalanceCheckRead,
    summary="Compare balance projections against the ledgers"
)
def balance_check(
    user_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> BalanceCheckRead:
    points = points_ledger.recompute_points_balance(db, user_id)
    earnings = earnings_ledger.recompute_earnings_totals(db, user_id)
    return BalanceCheckRead(
        user_id=user_id,
        points_ledger_total=points.ledger_total,
        points_balance=points.projected_balance,
        earnings_ledger_available=earnings.ledger_available,
        earnings_available=earnings.projected_available,
        earnings_ledger_locked=earnings.ledger_locked,
        earnings_locked=earnings.projected_locked,
        in_sync=points.in_sync and earnings.in_sync,
    )

@router.get(
    "/fraud-flags",
    response_model=List[FraudFlagRead],
    summary="List fraud flags"
)
def list_fraud_flags(
    user_id: Optional[int] = Query(None),
    resolved: Optional[bool] = Query(None),
    severity: Optional[FraudSeverity] = Query(None),
    admin: User = Depends(require_admin),
    pagination: dict = Depends(get_pagination_params),
    db: Session = Depends(get_db)
) -> List[FraudFlagRead]:
    flags = fraud_review.list_fraud_flags(db, user_id=user_id, resolved=resolved, severity=severity, **pagination)
    return [FraudFlagRead.model_validate(f) for f in flags]

@router.put(
    "/fraud-flags/{flag_id}/resolve",
    response_model=FraudFlagRead,
    summary="Mark a fraud flag resolved"
)
def resolve_fraud_flag(
    flag_id: int,
    payload: FraudFlagResolve,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
) -> FraudFlagRead:
    flag = fraud_review.resolve_fraud_flag(
        db,
        flag_id,
        reviewer=payload.resolved_by,
        notes=payload.resolution_notes,
        request_id=request.headers.get("X-Request-ID", "unknown"),
    )
    return FraudFlagRead.model_validate(flag)
