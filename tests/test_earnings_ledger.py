from datetime import timedelta
from decimal import Decimal

import pytest

from traffic_exchange.models.db import EarningsLedgerEntry, EarningsSource, EarningsStatus
from traffic_exchange.services.earnings_ledger import (
    debit_available,
    get_available_balance,
    list_earnings,
    lock_earnings,
    recompute_earnings_totals,
    unlock_due_earnings,
)
from traffic_exchange.services.errors import InsufficientFunds, NotFound


def _status(db, entry_id):
    db.expire_all()
    return db.get(EarningsLedgerEntry, entry_id).status


def test_locked_entry_unlocks_only_after_fifteen_days(db_session, user_factory, now):
    user = user_factory()
    entry = lock_earnings(db_session, user.id, Decimal("12.50"), EarningsSource.AD_REVENUE_SHARE, now=now)
    assert entry.status == EarningsStatus.LOCKED
    assert entry.unlock_at.replace(tzinfo=None) == (now + timedelta(days=15)).replace(tzinfo=None)

    unlock_due_earnings(db_session, now=now + timedelta(days=14, hours=23))
    assert _status(db_session, entry.id) == EarningsStatus.LOCKED
    assert get_available_balance(db_session, user.id) == Decimal("0.00")

    unlock_due_earnings(db_session, now=now + timedelta(days=15, minutes=1))
    assert _status(db_session, entry.id) == EarningsStatus.AVAILABLE
    assert get_available_balance(db_session, user.id) == Decimal("12.50")

    db_session.refresh(user)
    assert user.earnings_available == Decimal("12.50")
    assert user.earnings_locked == Decimal("0.00")


def test_unlock_sweep_is_idempotent(db_session, user_factory, now):
    user = user_factory()
    lock_earnings(db_session, user.id, Decimal("3"), EarningsSource.BONUS, now=now)
    sweep_at = now + timedelta(days=16)
    unlock_due_earnings(db_session, now=sweep_at)
    assert unlock_due_earnings(db_session, now=sweep_at) == 0

    db_session.refresh(user)
    assert user.earnings_available == Decimal("3.00")
    assert recompute_earnings_totals(db_session, user.id).in_sync


def test_locked_earnings_cannot_be_withdrawn(db_session, user_factory, now):
    user = user_factory()
    lock_earnings(db_session, user.id, Decimal("50"), EarningsSource.REFERRAL_COMMISSION, now=now)
    with pytest.raises(InsufficientFunds):
        debit_available(db_session, user.id, Decimal("1"), now=now + timedelta(days=1))


def test_debit_consumes_oldest_first_and_issues_change(db_session, user_factory, now):
    user = user_factory()
    older = lock_earnings(db_session, user.id, Decimal("5.00"), EarningsSource.AD_REVENUE_SHARE, now=now)
    newer = lock_earnings(db_session, user.id, Decimal("10.00"), EarningsSource.BONUS, now=now + timedelta(hours=1))
    unlock_due_earnings(db_session, now=now + timedelta(days=16))

    withdrawal = debit_available(db_session, user.id, Decimal("7.25"), now=now + timedelta(days=16))

    assert withdrawal.amount == Decimal("7.25")
    assert withdrawal.consumed_entry_ids == [older.id, newer.id]
    assert withdrawal.change_entry_id is not None
    assert _status(db_session, older.id) == EarningsStatus.WITHDRAWN
    assert _status(db_session, newer.id) == EarningsStatus.WITHDRAWN
    change = db_session.get(EarningsLedgerEntry, withdrawal.change_entry_id)
    assert change.status == EarningsStatus.AVAILABLE
    assert change.amount == Decimal("7.75")
    assert change.split_from_id == newer.id
    assert change.source == EarningsSource.BONUS

    assert get_available_balance(db_session, user.id) == Decimal("7.75")
    db_session.refresh(user)
    assert user.earnings_available == Decimal("7.75")
    assert recompute_earnings_totals(db_session, user.id).in_sync


def test_exact_debit_leaves_no_change(db_session, user_factory, now):
    user = user_factory()
    lock_earnings(db_session, user.id, Decimal("4.00"), EarningsSource.AD_REVENUE_SHARE, now=now)
    unlock_due_earnings(db_session, now=now + timedelta(days=16))
    withdrawal = debit_available(db_session, user.id, Decimal("4.00"), now=now + timedelta(days=16))
    assert withdrawal.change_entry_id is None
    assert get_available_balance(db_session, user.id) == Decimal("0.00")


def test_overdraw_fails_without_mutation(db_session, user_factory, now):
    user = user_factory()
    lock_earnings(db_session, user.id, Decimal("2.00"), EarningsSource.BONUS, now=now)
    unlock_due_earnings(db_session, now=now + timedelta(days=16))

    with pytest.raises(InsufficientFunds):
        debit_available(db_session, user.id, Decimal("2.01"), now=now + timedelta(days=16))

    assert get_available_balance(db_session, user.id) == Decimal("2.00")
    assert [e.status for e in list_earnings(db_session, user.id)] == [EarningsStatus.AVAILABLE]


def test_unknown_user_is_not_found(db_session, now):
    with pytest.raises(NotFound):
        get_available_balance(db_session, 987654321)
    with pytest.raises(NotFound):
        debit_available(db_session, 987654321, Decimal("1"), now=now)
