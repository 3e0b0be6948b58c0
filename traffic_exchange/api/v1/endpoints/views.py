"""
View session endpoints: start a view, complete it, read today's earned total.
"""
from datetime import date
from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.orm import Session
import time
from traffic_exchange.api.deps import get_db, get_current_user, get_request_meta, get_proxy_evaluator
from traffic_exchange.config import VIEW_VALIDATION_SETTINGS
from traffic_exchange.models.db import User
from traffic_exchange.models.schemas.views import (
    ViewStartRequest, ViewStartResponse, ViewCompleteRequest, ViewCompleteResponse, DailyTotalResponse
)
from traffic_exchange.services.errors import LedgerError
from traffic_exchange.services.fraud_checks import ProxyEvaluator, RequestMeta, default_pipeline
from traffic_exchange.services import view_sessions
from traffic_exchange.utils import get_logger, log_performance
from traffic_exchange.utils.time import day_for, utc_now

router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "/start",
    response_model=ViewStartResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a view session",
    description="Open a pending view session for a partner site and return its session token"
)
def start_view(
    payload: ViewStartRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db)
) -> ViewStartResponse:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "View start requested",
        user_id=current_user.id,
        site_id=payload.site_id,
        ip_address=meta.ip,
        request_id=request_id
    )

    try:
        session = view_sessions.start_view(
            db,
            user_id=current_user.id,
            site_id=payload.site_id,
            meta=meta,
            request_id=request_id,
        )
        log_performance(
            operation="start_view",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"view_session_id": session.id}
        )
        return ViewStartResponse(
            view_session_id=session.id,
            session_token=session.session_token,
            started_at=session.started_at,
        )
    except (HTTPException, LedgerError):
        raise
    except Exception as e:
        logger.error(
            "View start failed: unexpected error",
            error=str(e),
            user_id=current_user.id,
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to start view session"
        )

@router.post(
    "/complete",
    response_model=ViewCompleteResponse,
    summary="Complete a view session",
    description="Run the fraud checks for a session token and credit the view if it passes"
)
def complete_view(
    payload: ViewCompleteRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    meta: RequestMeta = Depends(get_request_meta),
    proxy_evaluator: ProxyEvaluator = Depends(get_proxy_evaluator),
    db: Session = Depends(get_db)
) -> ViewCompleteResponse:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    logger.info(
        "View completion requested",
        user_id=current_user.id,
        claimed_site_id=payload.site_id,
        ip_address=meta.ip,
        request_id=request_id
    )

    try:
        completion = view_sessions.complete_view(
            db,
            user_id=current_user.id,
            session_token=payload.session_token,
            meta=meta,
            claimed_site_id=payload.site_id,
            pipeline=default_pipeline(proxy_evaluator=proxy_evaluator),
            request_id=request_id,
        )
        log_performance(
            operation="complete_view",
            duration_ms=(time.time() - start_time) * 1000,
            additional_data={"view_session_id": completion.view_session_id}
        )
        return ViewCompleteResponse(
            view_session_id=completion.view_session_id,
            points_awarded=completion.points_awarded,
            completed_at=completion.completed_at,
        )
    except (HTTPException, LedgerError):
        raise
    except Exception as e:
        logger.error(
            "View completion failed: unexpected error",
            error=str(e),
            user_id=current_user.id,
            request_id=request_id,
            exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to complete view session"
        )

@router.get(
    "/daily-total",
    response_model=DailyTotalResponse,
    summary="Points earned from views on a day"
)
def get_daily_total(
    day: Optional[date] = Query(None, description="Calendar day (YYYY-MM-DD); defaults to today"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> DailyTotalResponse:
    tz_name = str(VIEW_VALIDATION_SETTINGS.get("day_boundary_timezone") or "UTC")
    day = day or day_for(utc_now(), tz_name)
    total = view_sessions.get_daily_earned_total(db, current_user.id, day)
    return DailyTotalResponse(
        day=day,
        points=total,
        cap=Decimal(str(VIEW_VALIDATION_SETTINGS["daily_points_cap"])),
    )
