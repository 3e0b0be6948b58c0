"""Database-backed rate limiter for credited views.

Two keys are limited:
  * IP cooldown: one credited view per IP address per window.
  * Daily cap: view_earn points per user per calendar day.

Each key owns one row (``ip_cooldown_slots`` / ``daily_earning_counters``).
Admission is a single conditional UPDATE on that row, executed inside the
caller's completing transaction:

    admitted = UPDATE slot SET ... WHERE <key> AND <still under the limit>
    admitted  <=>  rowcount == 1

The database serializes writers on the row, so two racing completions for the
same key cannot both be admitted. When the caller rolls back (a later check
failed, or the session was already completed) the reservation rolls back with
it and nothing is consumed.

Rows must exist before the UPDATE can match; ``ensure_keys`` creates them in
a short separate transaction and tolerates a concurrent creator.

Usage pattern:
    limiter = ViewRateLimiter()
    limiter.ensure_keys(db, ip=ip, user_id=user.id, day=today)
    if not limiter.admit_user_daily(db, user.id, points, cap=cap, day=today):
        ...reject
    if not limiter.admit_ip(db, ip, now=now, window_seconds=600, view_session_id=sid):
        ...reject
    db.commit()
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from traffic_exchange.models.db.enums import PointsTransactionKind
from traffic_exchange.models.db.points_ledger import PointsLedgerEntry
from traffic_exchange.models.db.rate_limits import DailyEarningCounter, IpCooldownSlot
from traffic_exchange.utils.logger import get_logger
from traffic_exchange.utils.time import day_bounds

logger = get_logger(__name__)


class ViewRateLimiter:
    def ensure_keys(self, db: Session, *, ip: str, user_id: int, day: date) -> None:
        """Create the slot rows for (ip) and (user, day) if missing. Commits."""
        if db.get(IpCooldownSlot, ip) is None:
            self._insert_ignoring_duplicate(db, IpCooldownSlot(ip_address=ip, last_valid_at=None), IpCooldownSlot, ip)
        if db.get(DailyEarningCounter, (user_id, day)) is None:
            self._insert_ignoring_duplicate(
                db,
                DailyEarningCounter(user_id=user_id, day=day, points_total=Decimal("0")),
                DailyEarningCounter,
                (user_id, day),
            )

    @staticmethod
    def _insert_ignoring_duplicate(db: Session, row: object, model: type, key: object) -> None:
        try:
            db.add(row)
            db.commit()
        except IntegrityError:
            db.rollback()
            # Only a concurrent creator of the same key is tolerated
            if db.get(model, key) is None:
                raise

    def admit_ip(self, db: Session, ip: str, *, now: datetime, window_seconds: int, view_session_id: int | None = None) -> bool:
        """Reserve the IP slot if the last credited view is at least one window old.

        The window is half-open: a view at exactly T + window is admitted.
        """
        threshold = now - timedelta(seconds=window_seconds)
        result = db.execute(
            update(IpCooldownSlot)
            .where(IpCooldownSlot.ip_address == ip)
            .where(or_(IpCooldownSlot.last_valid_at.is_(None), IpCooldownSlot.last_valid_at <= threshold))
            .values(last_valid_at=now, view_session_id=view_session_id)
            .execution_options(synchronize_session=False)
        )
        admitted = result.rowcount == 1
        if not admitted:
            logger.debug("IP cooldown slot busy", ip_address=ip, window_seconds=window_seconds)
        return admitted

    def admit_user_daily(self, db: Session, user_id: int, points: Decimal, *, cap: Decimal, day: date) -> bool:
        """Reserve ``points`` against the user's daily total while it is below ``cap``.

        The cap gates on the total *before* this view, so one view may carry
        the total past the cap (99,999.5 + 1 is admitted); the next is not.
        """
        result = db.execute(
            update(DailyEarningCounter)
            .where(DailyEarningCounter.user_id == user_id, DailyEarningCounter.day == day)
            .where(DailyEarningCounter.points_total < cap)
            .values(points_total=DailyEarningCounter.points_total + points)
            .execution_options(synchronize_session=False)
        )
        admitted = result.rowcount == 1
        if not admitted:
            logger.debug("Daily cap reached", user_id=user_id, day=day.isoformat(), cap=cap)
        return admitted

    def get_daily_earned_total(self, db: Session, user_id: int, day: date, tz_name: str = "UTC") -> Decimal:
        """Sum of view_earn ledger entries for the user within the calendar day."""
        start, end = day_bounds(day, tz_name)
        total = db.execute(
            select(func.coalesce(func.sum(PointsLedgerEntry.amount), 0))
            .where(PointsLedgerEntry.user_id == user_id)
            .where(PointsLedgerEntry.kind == PointsTransactionKind.VIEW_EARN)
            .where(PointsLedgerEntry.created_at >= start, PointsLedgerEntry.created_at < end)
        ).scalar_one()
        return Decimal(str(total))


# Shared instance used by the view session service and API
rate_limiter = ViewRateLimiter()

__all__ = ["rate_limiter", "ViewRateLimiter"]
