"""Points ledger: append-only point movements and the balance projection.

Every movement is one ``PointsLedgerEntry`` plus a conditional UPDATE of
``users.points_balance`` in the same transaction. Debits only apply while the
balance covers them, so the projection can never go negative.

``append_points_entry`` never commits; it is the building block used inside
larger transactions (view credit, referral bonus, conversion). The public
``credit_points`` / ``debit_points`` / ``adjust_points`` /
``grant_referral_bonus`` functions own their transaction.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from traffic_exchange.config import REFERRAL_SETTINGS
from traffic_exchange.models.db.enums import PointsTransactionKind
from traffic_exchange.models.db.points_ledger import PointsLedgerEntry, ReferralBonus
from traffic_exchange.models.db.users import User
from traffic_exchange.services.errors import Conflict, InsufficientFunds, NotFound, StorageFailure
from traffic_exchange.utils import get_logger, log_business_event
from traffic_exchange.utils.time import ensure_utc, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class PointsBalanceReport:
    user_id: int
    ledger_total: Decimal
    projected_balance: Decimal

    @property
    def in_sync(self) -> bool:
        return self.ledger_total == self.projected_balance


def _user_exists(db: Session, user_id: int) -> bool:
    return db.execute(select(User.id).where(User.id == user_id)).first() is not None


def append_points_entry(
    db: Session,
    *,
    user_id: int,
    amount: Decimal,
    kind: PointsTransactionKind,
    now: datetime,
    view_session_id: Optional[int] = None,
    referral_bonus_id: Optional[int] = None,
) -> PointsLedgerEntry:
    """Append one signed entry and move the balance projection. Does not commit."""
    amount = Decimal(amount)
    if amount == 0:
        raise ValueError("points ledger entries must be non-zero")

    if amount > 0:
        result = db.execute(
            update(User)
            .where(User.id == user_id)
            .values(points_balance=User.points_balance + amount, last_earning_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound(f"User {user_id} not found", code="user_not_found")
    else:
        result = db.execute(
            update(User)
            .where(User.id == user_id, User.points_balance >= -amount)
            .values(points_balance=User.points_balance + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if not _user_exists(db, user_id):
                raise NotFound(f"User {user_id} not found", code="user_not_found")
            raise InsufficientFunds(
                "Insufficient points balance",
                details={"user_id": user_id, "requested": str(-amount)},
            )

    entry = PointsLedgerEntry(
        user_id=user_id,
        amount=amount,
        kind=kind,
        view_session_id=view_session_id,
        referral_bonus_id=referral_bonus_id,
        created_at=now,
    )
    db.add(entry)
    db.flush()
    return entry


def _commit(db: Session, operation: str, **context) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"{operation} failed to commit", error=str(e), **context)
        raise StorageFailure(f"Could not persist {operation}") from e


def credit_points(
    db: Session,
    user_id: int,
    amount: Decimal,
    kind: PointsTransactionKind,
    *,
    view_session_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PointsLedgerEntry:
    if Decimal(amount) <= 0:
        raise ValueError("credit amount must be positive")
    now = ensure_utc(now or utc_now())
    try:
        entry = append_points_entry(db, user_id=user_id, amount=amount, kind=kind, now=now, view_session_id=view_session_id)
    except IntegrityError as e:
        db.rollback()
        raise Conflict("Points already credited for this session", code="session_already_completed") from e
    except Exception:
        db.rollback()
        raise
    _commit(db, "points credit", user_id=user_id, kind=kind.value)
    return entry


def debit_points(
    db: Session,
    user_id: int,
    amount: Decimal,
    kind: PointsTransactionKind,
    *,
    now: Optional[datetime] = None,
) -> PointsLedgerEntry:
    if Decimal(amount) <= 0:
        raise ValueError("debit amount must be positive")
    now = ensure_utc(now or utc_now())
    try:
        entry = append_points_entry(db, user_id=user_id, amount=-Decimal(amount), kind=kind, now=now)
    except Exception:
        db.rollback()
        raise
    _commit(db, "points debit", user_id=user_id, kind=kind.value)
    return entry


def adjust_points(db: Session, user_id: int, amount: Decimal, *, now: Optional[datetime] = None, request_id: Optional[str] = None) -> PointsLedgerEntry:
    """Signed admin correction. Negative adjustments cannot overdraw."""
    amount = Decimal(amount)
    if amount > 0:
        entry = credit_points(db, user_id, amount, PointsTransactionKind.ADMIN_ADJUSTMENT, now=now)
    else:
        entry = debit_points(db, user_id, -amount, PointsTransactionKind.ADMIN_ADJUSTMENT, now=now)
    log_business_event(
        event_type="points_adjusted",
        details={"amount": amount, "entry_id": entry.id},
        user_id=user_id,
        request_id=request_id,
    )
    return entry


def apply_referral_bonus(db: Session, *, referred_user_id: int, referrer_id: int, now: datetime) -> ReferralBonus:
    """Create the bonus row and both credits. Does not commit.

    The unique ``referred_user_id`` on ReferralBonus turns a second grant into
    an IntegrityError at flush.
    """
    bonus_points = Decimal(str(REFERRAL_SETTINGS["bonus_points"]))
    bonus = ReferralBonus(
        referred_user_id=referred_user_id,
        referrer_id=referrer_id,
        bonus_points=bonus_points,
        created_at=now,
    )
    db.add(bonus)
    db.flush()
    for beneficiary in (referred_user_id, referrer_id):
        append_points_entry(
            db,
            user_id=beneficiary,
            amount=bonus_points,
            kind=PointsTransactionKind.REFERRAL_BONUS,
            now=now,
            referral_bonus_id=bonus.id,
        )
    return bonus


def grant_referral_bonus(db: Session, referred_user_id: int, *, now: Optional[datetime] = None, request_id: Optional[str] = None) -> ReferralBonus:
    """Grant the referral bonus pair for a referred member, at most once."""
    now = ensure_utc(now or utc_now())
    referred = db.get(User, referred_user_id)
    if referred is None:
        raise NotFound(f"User {referred_user_id} not found", code="user_not_found")
    if referred.referred_by_id is None:
        raise NotFound(f"User {referred_user_id} has no referrer", code="referrer_not_found")
    referrer_id = referred.referred_by_id

    try:
        bonus = apply_referral_bonus(db, referred_user_id=referred_user_id, referrer_id=referrer_id, now=now)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.info("Referral bonus already granted", referred_user_id=referred_user_id)
        raise Conflict("Referral bonus already granted", code="referral_bonus_already_granted") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure("Could not persist referral bonus") from e

    log_business_event(
        event_type="referral_bonus_granted",
        details={"referrer_id": referrer_id, "bonus_points": bonus.bonus_points},
        user_id=referred_user_id,
        request_id=request_id,
    )
    return bonus


def get_points_history(db: Session, user_id: int, *, limit: int = 50, offset: int = 0) -> list[PointsLedgerEntry]:
    return list(
        db.execute(
            select(PointsLedgerEntry)
            .where(PointsLedgerEntry.user_id == user_id)
            .order_by(PointsLedgerEntry.created_at.desc(), PointsLedgerEntry.id.desc())
            .limit(limit)
            .offset(offset)
        ).scalars()
    )


def recompute_points_balance(db: Session, user_id: int) -> PointsBalanceReport:
    """Re-derive the balance from the ledger and compare it with the projection."""
    user = db.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found", code="user_not_found")
    total = db.execute(
        select(func.coalesce(func.sum(PointsLedgerEntry.amount), 0)).where(PointsLedgerEntry.user_id == user_id)
    ).scalar_one()
    report = PointsBalanceReport(
        user_id=user_id,
        ledger_total=Decimal(str(total)),
        projected_balance=Decimal(str(user.points_balance)),
    )
    if not report.in_sync:
        logger.warning(
            "Points balance drift detected",
            user_id=user_id,
            ledger_total=report.ledger_total,
            projected_balance=report.projected_balance,
        )
    return report


__all__ = [
    "PointsBalanceReport",
    "append_points_entry",
    "credit_points",
    "debit_points",
    "adjust_points",
    "apply_referral_bonus",
    "grant_referral_bonus",
    "get_points_history",
    "recompute_points_balance",
]
