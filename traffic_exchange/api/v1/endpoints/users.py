"""
Member endpoints: registration, profile, referrals, sites, conversions and history.
"""
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.orm import Session
import time
from traffic_exchange.api.deps import get_db, get_current_user, get_pagination_params
from traffic_exchange.config import REFERRAL_SETTINGS
from traffic_exchange.models.db import User
from traffic_exchange.models.db.enums import EarningsStatus
from traffic_exchange.models.schemas.users import (
    UserRegister, UserRead, UserRegistered, ReferralRead, ReferralList, SiteCreate, SiteRead
)
from traffic_exchange.models.schemas.ledger import (
    PointsConversionRequest, EarningsEntryRead, PointsEntryRead
)
from traffic_exchange.services import directory, earnings_ledger, points_ledger
from traffic_exchange.services.errors import LedgerError
from traffic_exchange.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "/",
    response_model=UserRegistered,
    status_code=status.HTTP_201_CREATED,
    summary="Register a member",
    description="Create a member account; a valid referral code credits both parties the referral bonus"
)
def register_user(
    payload: UserRegister,
    request: Request,
    db: Session = Depends(get_db)
) -> UserRegistered:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "User registration started",
        username=payload.username,
        has_referral_code=bool(payload.referral_code),
        request_id=request_id
    )

    try:
        user = directory.register_user(
            db,
            username=payload.username,
            email=payload.email,
            referral_code=payload.referral_code,
            request_id=request_id,
        )
        log_performance(
            operation="register_user",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"user_id": user.id, "referred": user.referred_by_id is not None}
        )
        return UserRegistered.model_validate(user)
    except (HTTPException, LedgerError):
        raise
    except Exception as e:
        logger.error(
            "User registration failed: unexpected error",
            error=str(e),
            username=payload.username,
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to register user"
        )

@router.get("/me", response_model=UserRead, summary="Current member profile and balances")
def get_me(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)

@router.get("/me/referrals", response_model=ReferralList, summary="Members referred by the current member")
def get_my_referrals(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ReferralList:
    referrals = directory.list_referrals(db, current_user.id)
    return ReferralList(
        count=len(referrals),
        list=[ReferralRead.model_validate(r) for r in referrals],
        bonus_per_referral=Decimal(str(REFERRAL_SETTINGS["bonus_points"])),
    )

@router.post(
    "/me/sites",
    response_model=SiteRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register a partner site owned by the current member"
)
def create_my_site(
    payload: SiteCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> SiteRead:
    request_id = request.headers.get("X-Request-ID", "unknown")
    site = directory.create_site(
        db,
        owner_id=current_user.id,
        url=payload.url,
        points_per_view=payload.points_per_view,
        request_id=request_id,
    )
    return SiteRead.model_validate(site)

@router.post(
    "/me/conversions",
    response_model=EarningsEntryRead,
    status_code=status.HTTP_201_CREATED,
    summary="Convert points into locked earnings"
)
def convert_my_points(
    payload: PointsConversionRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> EarningsEntryRead:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "Points conversion requested",
        user_id=current_user.id,
        points=payload.points,
        request_id=request_id
    )

    entry = earnings_ledger.convert_points(db, current_user.id, payload.points, request_id=request_id)
    log_performance(
        operation="convert_points",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"entry_id": entry.id}
    )
    return EarningsEntryRead.model_validate(entry)

@router.get("/me/points", response_model=List[PointsEntryRead], summary="Points ledger history")
def get_my_points_history(
    current_user: User = Depends(get_current_user),
    pagination: dict = Depends(get_pagination_params),
    db: Session = Depends(get_db)
) -> List[PointsEntryRead]:
    entries = points_ledger.get_points_history(db, current_user.id, **pagination)
    return [PointsEntryRead.model_validate(e) for e in entries]

@router.get("/me/earnings", response_model=List[EarningsEntryRead], summary="Earnings ledger entries")
def get_my_earnings(
    status_filter: Optional[EarningsStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    pagination: dict = Depends(get_pagination_params),
    db: Session = Depends(get_db)
) -> List[EarningsEntryRead]:
    entries = earnings_ledger.list_earnings(db, current_user.id, status=status_filter, **pagination)
    return [EarningsEntryRead.model_validate(e) for e in entries]
