"""View session lifecycle: start -> complete.

``start_view`` opens a pending session bound to an unpredictable token; no
fraud checks run at start.

``complete_view`` is the crediting path:
1. Snapshot the session row (read only) and price the view from its site.
2. Make sure the rate-limit slot rows for (ip) and (user, day) exist.
3. In one transaction run the fraud pipeline (which reserves rate-limit
   slots as it admits), then flip the session pending -> valid with a
   conditional UPDATE, append the view_earn entry and move the balance.
4. On rejection roll everything back, then record the rejection's side
   effects (fraud counter, fraud flag, terminal `rejected` state) in a
   fresh transaction and raise the matching domain error.

The conditional UPDATE on ``state = 'pending'`` is what makes completion
exactly-once: of two racing completions of one token only one can match it,
and the loser rolls back its reservations.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from traffic_exchange.config import VIEW_VALIDATION_SETTINGS
from traffic_exchange.models.db.enums import PointsTransactionKind, RejectionReason, ViewSessionState
from traffic_exchange.models.db.fraud_flags import FraudFlag
from traffic_exchange.models.db.sites import Site
from traffic_exchange.models.db.users import User
from traffic_exchange.models.db.view_sessions import ViewSession
from traffic_exchange.services.errors import Conflict, LedgerError, NotFound, StorageFailure, ValidationRejected
from traffic_exchange.services.fraud_checks import (
    CheckResult,
    FraudPipeline,
    RequestMeta,
    SessionSnapshot,
    ViewCandidate,
    default_pipeline,
)
from traffic_exchange.services.points_ledger import append_points_entry
from traffic_exchange.utils import get_logger, log_business_event
from traffic_exchange.utils.ratelimiter import ViewRateLimiter, rate_limiter
from traffic_exchange.utils.time import day_for, ensure_utc, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class ViewCompletion:
    view_session_id: int
    points_awarded: Decimal
    completed_at: datetime


def _error_for(result: CheckResult) -> LedgerError:
    reason = result.reason
    code = reason.value if reason else "rejected"
    if reason == RejectionReason.INVALID_SESSION:
        return NotFound(result.message or "Invalid session", code=code)
    if reason == RejectionReason.SESSION_ALREADY_COMPLETED:
        return Conflict(result.message or "Session already completed", code=code)
    return ValidationRejected(result.message or "View rejected", code=code)


def _tz_name() -> str:
    return str(VIEW_VALIDATION_SETTINGS.get("day_boundary_timezone") or "UTC")


def start_view(
    db: Session,
    *,
    user_id: int,
    site_id: int,
    meta: RequestMeta,
    now: Optional[datetime] = None,
    request_id: Optional[str] = None,
) -> ViewSession:
    now = ensure_utc(now or utc_now())
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFound(f"User {user_id} not found", code="user_not_found")
    site = db.get(Site, site_id)
    if site is None or not site.is_active:
        raise NotFound(f"Site {site_id} not found or inactive", code="site_not_found")

    session = ViewSession(
        session_token=secrets.token_urlsafe(32),
        viewer_id=user_id,
        site_id=site_id,
        ip_address=meta.ip,
        user_agent=meta.user_agent or None,
        state=ViewSessionState.PENDING,
        started_at=now,
    )
    try:
        db.add(session)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure("Could not persist view session") from e
    db.refresh(session)

    log_business_event(
        event_type="view_started",
        details={"view_session_id": session.id, "site_id": site_id, "ip_address": meta.ip},
        user_id=user_id,
        request_id=request_id,
    )
    return session


def _snapshot(db: Session, session_token: str) -> tuple[Optional[SessionSnapshot], Decimal]:
    default_points = Decimal(str(VIEW_VALIDATION_SETTINGS["default_points_per_view"]))
    row = db.execute(
        select(ViewSession, Site.points_per_view)
        .join(Site, Site.id == ViewSession.site_id)
        .where(ViewSession.session_token == session_token)
    ).first()
    if row is None:
        return None, default_points
    vs, rate = row
    snapshot = SessionSnapshot(
        id=vs.id,
        session_token=vs.session_token,
        viewer_id=vs.viewer_id,
        site_id=vs.site_id,
        state=vs.state,
        started_at=ensure_utc(vs.started_at),
    )
    points = Decimal(rate) if rate is not None and Decimal(rate) > 0 else default_points
    return snapshot, points


def _credit(db: Session, candidate: ViewCandidate) -> ViewCompletion:
    session = candidate.session
    if session is None:
        raise NotFound("Invalid session", code=RejectionReason.INVALID_SESSION.value)
    result = db.execute(
        update(ViewSession)
        .where(ViewSession.id == session.id, ViewSession.state == ViewSessionState.PENDING)
        .values(state=ViewSessionState.VALID, completed_at=candidate.now, points_awarded=candidate.points)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise Conflict("Session already completed", code=RejectionReason.SESSION_ALREADY_COMPLETED.value)
    append_points_entry(
        db,
        user_id=candidate.user_id,
        amount=candidate.points,
        kind=PointsTransactionKind.VIEW_EARN,
        now=candidate.now,
        view_session_id=session.id,
    )
    return ViewCompletion(view_session_id=session.id, points_awarded=candidate.points, completed_at=candidate.now)


def _record_rejection(db: Session, candidate: ViewCandidate, result: CheckResult) -> None:
    """Persist what a rejection leaves behind. Runs after the pipeline rolled back."""
    session = candidate.session
    owned = session is not None and session.viewer_id == candidate.user_id
    if not (result.flag_user or result.severity or result.terminal):
        return
    try:
        if result.terminal and owned:
            moved = db.execute(
                update(ViewSession)
                .where(ViewSession.id == session.id, ViewSession.state == ViewSessionState.PENDING)
                .values(state=ViewSessionState.REJECTED, completed_at=candidate.now, fraud_reason=result.reason)
                .execution_options(synchronize_session=False)
            )
            if moved.rowcount != 1:
                # Completed concurrently; the snapshot was stale.
                db.rollback()
                raise Conflict("Session already completed", code=RejectionReason.SESSION_ALREADY_COMPLETED.value)
        if result.flag_user:
            db.execute(
                update(User)
                .where(User.id == candidate.user_id)
                .values(fraud_flag_count=User.fraud_flag_count + 1)
                .execution_options(synchronize_session=False)
            )
        if result.severity is not None:
            db.add(FraudFlag(
                user_id=candidate.user_id,
                view_session_id=session.id if owned else None,
                reason_code=result.reason,
                severity=result.severity,
                ip_address=candidate.meta.ip,
                created_at=candidate.now,
            ))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure("Could not record view rejection") from e


def complete_view(
    db: Session,
    *,
    user_id: int,
    session_token: str,
    meta: RequestMeta,
    claimed_site_id: Optional[int] = None,
    now: Optional[datetime] = None,
    pipeline: Optional[FraudPipeline] = None,
    limiter: Optional[ViewRateLimiter] = None,
    request_id: Optional[str] = None,
) -> ViewCompletion:
    """Validate and credit one view, or raise the rejection as a domain error."""
    now = ensure_utc(now or utc_now())
    limiter = limiter or rate_limiter
    pipeline = pipeline or default_pipeline(limiter=limiter)
    day = day_for(now, _tz_name())

    if db.get(User, user_id) is None:
        raise NotFound(f"User {user_id} not found", code="user_not_found")

    snapshot, points = _snapshot(db, session_token)
    try:
        limiter.ensure_keys(db, ip=meta.ip, user_id=user_id, day=day)
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure("Could not prepare rate limit slots") from e

    candidate = ViewCandidate(
        user_id=user_id,
        session_token=session_token,
        meta=meta,
        now=now,
        day=day,
        points=points,
        session=snapshot,
        claimed_site_id=claimed_site_id,
    )

    completion: Optional[ViewCompletion] = None
    try:
        result = pipeline.run(db, candidate)
        if result.admitted:
            completion = _credit(db, candidate)
            db.commit()
        else:
            db.rollback()
    except LedgerError:
        db.rollback()
        raise
    except IntegrityError as e:
        # Unique (kind, view_session_id) on the ledger caught a second credit.
        db.rollback()
        raise Conflict("Session already completed", code=RejectionReason.SESSION_ALREADY_COMPLETED.value) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("View completion failed to commit", error=str(e), user_id=user_id, request_id=request_id)
        raise StorageFailure("Could not persist view completion") from e

    if completion is None:
        _record_rejection(db, candidate, result)
        log_business_event(
            event_type="view_rejected",
            details={
                "reason": result.reason.value if result.reason else None,
                "view_session_id": snapshot.id if snapshot else None,
                "ip_address": meta.ip,
            },
            user_id=user_id,
            request_id=request_id,
        )
        raise _error_for(result)

    log_business_event(
        event_type="view_credited",
        details={
            "view_session_id": completion.view_session_id,
            "points_awarded": completion.points_awarded,
            "ip_address": meta.ip,
        },
        user_id=user_id,
        request_id=request_id,
    )
    return completion


def get_daily_earned_total(db: Session, user_id: int, day: Optional[date] = None, *, limiter: Optional[ViewRateLimiter] = None) -> Decimal:
    tz_name = _tz_name()
    day = day or day_for(utc_now(), tz_name)
    return (limiter or rate_limiter).get_daily_earned_total(db, user_id, day, tz_name)


__all__ = ["ViewCompletion", "start_view", "complete_view", "get_daily_earned_total"]
