"""
Withdrawal subsystem boundary (service-token authenticated).
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
import time
from traffic_exchange.api.deps import get_db, require_withdrawal_service
from traffic_exchange.models.schemas.ledger import AvailableBalanceResponse, DebitRequest, WithdrawalRead
from traffic_exchange.services import earnings_ledger
from traffic_exchange.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)

@router.get(
    "/{user_id}/available",
    response_model=AvailableBalanceResponse,
    summary="Available (withdrawable) earnings for a member"
)
def get_available_balance(
    user_id: int,
    _service: str = Depends(require_withdrawal_service),
    db: Session = Depends(get_db)
) -> AvailableBalanceResponse:
    available = earnings_ledger.get_available_balance(db, user_id)
    return AvailableBalanceResponse(user_id=user_id, available=available)

@router.post(
    "/{user_id}/debit",
    response_model=WithdrawalRead,
    summary="Debit available earnings for a payout",
    description="Fails with 409 insufficient_funds when the available balance does not cover the amount"
)
def debit_available(
    user_id: int,
    payload: DebitRequest,
    request: Request,
    service: str = Depends(require_withdrawal_service),
    db: Session = Depends(get_db)
) -> WithdrawalRead:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "Available earnings debit requested",
        user_id=user_id,
        amount=payload.amount,
        caller=service,
        request_id=request_id
    )

    withdrawal = earnings_ledger.debit_available(db, user_id, payload.amount, request_id=request_id)
    log_performance(
        operation="debit_available",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"user_id": user_id, "entries": len(withdrawal.consumed_entry_ids)}
    )
    return WithdrawalRead(
        user_id=withdrawal.user_id,
        amount=withdrawal.amount,
        consumed_entry_ids=withdrawal.consumed_entry_ids,
        change_entry_id=withdrawal.change_entry_id,
    )
