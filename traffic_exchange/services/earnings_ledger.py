"""Earnings ledger: locked -> available -> withdrawn lifecycle.

Entries are created ``locked`` with ``unlock_at = created_at + holding period``.
Only the unlock sweep moves them to ``available``, and only once ``unlock_at``
has passed. The withdrawal boundary consumes ``available`` entries oldest
first; a partially consumed entry is marked ``withdrawn`` and the remainder is
re-issued as a new ``available`` change entry (``split_from_id`` -> parent).

User totals (``earnings_locked`` / ``earnings_available``) move in the same
transaction as the entries they summarise.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from traffic_exchange.config import EARNINGS_SETTINGS, UNLOCK_SCHEDULER_SETTINGS
from traffic_exchange.models.db.earnings_ledger import EarningsLedgerEntry
from traffic_exchange.models.db.enums import EarningsSource, EarningsStatus, PointsTransactionKind
from traffic_exchange.models.db.users import User
from traffic_exchange.services.errors import InsufficientFunds, LedgerError, NotFound, StorageFailure, ValidationRejected
from traffic_exchange.services.points_ledger import append_points_entry
from traffic_exchange.utils import get_logger, log_business_event
from traffic_exchange.utils.time import ensure_utc, utc_now

logger = get_logger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class Withdrawal:
    user_id: int
    amount: Decimal
    consumed_entry_ids: list[int] = field(default_factory=list)
    change_entry_id: Optional[int] = None


@dataclass(frozen=True)
class EarningsTotalsReport:
    user_id: int
    ledger_available: Decimal
    ledger_locked: Decimal
    projected_available: Decimal
    projected_locked: Decimal

    @property
    def in_sync(self) -> bool:
        return self.ledger_available == self.projected_available and self.ledger_locked == self.projected_locked


def _to_amount(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT)


def _holding_period() -> timedelta:
    return timedelta(days=int(EARNINGS_SETTINGS["holding_period_days"]))  # type: ignore[arg-type]


def append_locked_entry(db: Session, *, user_id: int, amount: Decimal, source: EarningsSource, now: datetime) -> EarningsLedgerEntry:
    """Insert a locked entry and bump the user's locked total. Does not commit."""
    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .values(earnings_locked=User.earnings_locked + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound(f"User {user_id} not found", code="user_not_found")
    entry = EarningsLedgerEntry(
        user_id=user_id,
        amount=amount,
        status=EarningsStatus.LOCKED,
        source=source,
        unlock_at=now + _holding_period(),
        created_at=now,
    )
    db.add(entry)
    db.flush()
    return entry


def lock_earnings(
    db: Session,
    user_id: int,
    amount: Decimal,
    source: EarningsSource,
    *,
    now: Optional[datetime] = None,
    request_id: Optional[str] = None,
) -> EarningsLedgerEntry:
    amount = _to_amount(amount)
    if amount <= 0:
        raise ValueError("earnings amount must be positive")
    now = ensure_utc(now or utc_now())
    try:
        entry = append_locked_entry(db, user_id=user_id, amount=amount, source=source, now=now)
        db.commit()
    except LedgerError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure("Could not persist earnings entry") from e

    log_business_event(
        event_type="earnings_locked",
        details={"entry_id": entry.id, "amount": amount, "source": source.value, "unlock_at": entry.unlock_at},
        user_id=user_id,
        request_id=request_id,
    )
    return entry


def unlock_due_earnings(db: Session, *, now: Optional[datetime] = None, batch_size: Optional[int] = None) -> int:
    """Move every locked entry with ``unlock_at <= now`` to available.

    Rows are claimed with ``FOR UPDATE SKIP LOCKED`` (ignored by SQLite) and
    each transition is a conditional UPDATE on ``status = 'locked'``, so
    concurrent sweeps never move the same entry twice. Commits per batch.
    Returns the number of entries this call transitioned.
    """
    now = ensure_utc(now or utc_now())
    batch = int(batch_size or UNLOCK_SCHEDULER_SETTINGS["batch_size"])  # type: ignore[arg-type]
    unlocked = 0
    while True:
        try:
            rows = db.execute(
                select(EarningsLedgerEntry.id, EarningsLedgerEntry.user_id, EarningsLedgerEntry.amount)
                .where(EarningsLedgerEntry.status == EarningsStatus.LOCKED, EarningsLedgerEntry.unlock_at <= now)
                .order_by(EarningsLedgerEntry.unlock_at, EarningsLedgerEntry.id)
                .limit(batch)
                .with_for_update(skip_locked=True)
            ).all()
            if not rows:
                db.rollback()
                break
            transitioned: list[tuple[int, int, Decimal]] = []
            for entry_id, user_id, amount in rows:
                result = db.execute(
                    update(EarningsLedgerEntry)
                    .where(EarningsLedgerEntry.id == entry_id, EarningsLedgerEntry.status == EarningsStatus.LOCKED)
                    .values(status=EarningsStatus.AVAILABLE, unlocked_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    continue
                db.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(
                        earnings_locked=User.earnings_locked - amount,
                        earnings_available=User.earnings_available + amount,
                    )
                    .execution_options(synchronize_session=False)
                )
                transitioned.append((entry_id, user_id, amount))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageFailure("Unlock sweep could not commit") from e
        for entry_id, user_id, amount in transitioned:
            log_business_event(
                event_type="earnings_unlocked",
                details={"entry_id": entry_id, "amount": amount},
                user_id=user_id,
            )
        moved = len(transitioned)
        unlocked += moved
        # A batch another sweeper fully claimed, or the last partial batch.
        if moved == 0 or len(rows) < batch:
            break
    if unlocked:
        logger.info("Unlock sweep transitioned entries", unlocked=unlocked, as_of=now)
    return unlocked


def get_available_balance(db: Session, user_id: int) -> Decimal:
    if db.execute(select(User.id).where(User.id == user_id)).first() is None:
        raise NotFound(f"User {user_id} not found", code="user_not_found")
    total = db.execute(
        select(func.coalesce(func.sum(EarningsLedgerEntry.amount), 0))
        .where(EarningsLedgerEntry.user_id == user_id, EarningsLedgerEntry.status == EarningsStatus.AVAILABLE)
    ).scalar_one()
    return _to_amount(Decimal(str(total)))


def debit_available(
    db: Session,
    user_id: int,
    amount: Decimal,
    *,
    now: Optional[datetime] = None,
    request_id: Optional[str] = None,
) -> Withdrawal:
    """Withdraw ``amount`` from available earnings or raise InsufficientFunds."""
    amount = _to_amount(amount)
    if amount <= 0:
        raise ValueError("withdrawal amount must be positive")
    now = ensure_utc(now or utc_now())
    try:
        result = db.execute(
            update(User)
            .where(User.id == user_id, User.earnings_available >= amount)
            .values(earnings_available=User.earnings_available - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            exists = db.execute(select(User.id).where(User.id == user_id)).first() is not None
            db.rollback()
            if not exists:
                raise NotFound(f"User {user_id} not found", code="user_not_found")
            raise InsufficientFunds("Insufficient available earnings", details={"user_id": user_id, "requested": str(amount)})

        entries = list(
            db.execute(
                select(EarningsLedgerEntry)
                .where(EarningsLedgerEntry.user_id == user_id, EarningsLedgerEntry.status == EarningsStatus.AVAILABLE)
                .order_by(EarningsLedgerEntry.unlock_at, EarningsLedgerEntry.id)
                .with_for_update()
            ).scalars()
        )
        remaining = amount
        consumed: list[int] = []
        change_entry: Optional[EarningsLedgerEntry] = None
        for entry in entries:
            if remaining <= 0:
                break
            entry_amount = _to_amount(entry.amount)
            entry.status = EarningsStatus.WITHDRAWN
            entry.withdrawn_at = now
            consumed.append(entry.id)
            if entry_amount > remaining:
                change_entry = EarningsLedgerEntry(
                    user_id=user_id,
                    amount=entry_amount - remaining,
                    status=EarningsStatus.AVAILABLE,
                    source=entry.source,
                    unlock_at=entry.unlock_at,
                    created_at=now,
                    unlocked_at=now,
                    split_from_id=entry.id,
                )
                db.add(change_entry)
                remaining = Decimal("0")
            else:
                remaining -= entry_amount
        if remaining > 0:
            # Projection said yes but the entries disagree; refuse rather than overdraw.
            db.rollback()
            logger.error("Available earnings projection exceeds ledger", user_id=user_id, shortfall=remaining)
            raise InsufficientFunds("Insufficient available earnings", details={"user_id": user_id, "requested": str(amount)})
        db.flush()
        change_id = change_entry.id if change_entry is not None else None
        db.commit()
    except LedgerError:
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure("Could not persist withdrawal") from e

    log_business_event(
        event_type="earnings_debited",
        details={"amount": amount, "consumed_entry_ids": consumed, "change_entry_id": change_id},
        user_id=user_id,
        request_id=request_id,
    )
    return Withdrawal(user_id=user_id, amount=amount, consumed_entry_ids=consumed, change_entry_id=change_id)


def convert_points(
    db: Session,
    user_id: int,
    points: Decimal,
    *,
    now: Optional[datetime] = None,
    request_id: Optional[str] = None,
) -> EarningsLedgerEntry:
    """Debit points and lock the equivalent earnings in one transaction."""
    points = Decimal(points)
    if points <= 0:
        raise ValueError("points to convert must be positive")
    rate = Decimal(str(EARNINGS_SETTINGS["points_per_currency_unit"]))
    amount = (points / rate).quantize(CENT, rounding=ROUND_DOWN)
    if amount <= 0:
        raise ValidationRejected(
            f"Converting {points} points yields less than {CENT}",
            code="conversion_too_small",
            details={"points_per_currency_unit": str(rate)},
        )
    now = ensure_utc(now or utc_now())
    try:
        append_points_entry(db, user_id=user_id, amount=-points, kind=PointsTransactionKind.CONVERSION, now=now)
        entry = append_locked_entry(db, user_id=user_id, amount=amount, source=EarningsSource.POINTS_CONVERSION, now=now)
        db.commit()
    except LedgerError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure("Could not persist points conversion") from e

    log_business_event(
        event_type="points_converted",
        details={"points": points, "amount": amount, "entry_id": entry.id},
        user_id=user_id,
        request_id=request_id,
    )
    return entry


def list_earnings(db: Session, user_id: int, *, status: Optional[EarningsStatus] = None, limit: int = 50, offset: int = 0) -> list[EarningsLedgerEntry]:
    stmt = select(EarningsLedgerEntry).where(EarningsLedgerEntry.user_id == user_id)
    if status is not None:
        stmt = stmt.where(EarningsLedgerEntry.status == status)
    stmt = stmt.order_by(EarningsLedgerEntry.created_at.desc(), EarningsLedgerEntry.id.desc()).limit(limit).offset(offset)
    return list(db.execute(stmt).scalars())


def recompute_earnings_totals(db: Session, user_id: int) -> EarningsTotalsReport:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found", code="user_not_found")
    sums = dict(
        db.execute(
            select(EarningsLedgerEntry.status, func.sum(EarningsLedgerEntry.amount))
            .where(EarningsLedgerEntry.user_id == user_id)
            .where(EarningsLedgerEntry.status.in_([EarningsStatus.AVAILABLE, EarningsStatus.LOCKED]))
            .group_by(EarningsLedgerEntry.status)
        ).all()
    )
    report = EarningsTotalsReport(
        user_id=user_id,
        ledger_available=_to_amount(Decimal(str(sums.get(EarningsStatus.AVAILABLE) or 0))),
        ledger_locked=_to_amount(Decimal(str(sums.get(EarningsStatus.LOCKED) or 0))),
        projected_available=_to_amount(user.earnings_available),
        projected_locked=_to_amount(user.earnings_locked),
    )
    if not report.in_sync:
        logger.warning("Earnings totals drift detected", user_id=user_id, report=report.__dict__)
    return report


__all__ = [
    "Withdrawal",
    "EarningsTotalsReport",
    "append_locked_entry",
    "lock_earnings",
    "unlock_due_earnings",
    "get_available_balance",
    "debit_available",
    "convert_points",
    "list_earnings",
    "recompute_earnings_totals",
]
