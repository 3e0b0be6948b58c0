import re
import secrets
from decimal import Decimal

import pytest

from traffic_exchange.config import REFERRAL_SETTINGS
from traffic_exchange.models.db import (
    EarningsLedgerEntry,
    EarningsSource,
    EarningsStatus,
    PointsLedgerEntry,
    PointsTransactionKind,
    ReferralBonus,
)
from traffic_exchange.services.directory import (
    generate_referral_code,
    is_valid_referral_code,
    list_referrals,
    register_user,
)
from traffic_exchange.services.earnings_ledger import convert_points
from traffic_exchange.services.errors import Conflict, InsufficientFunds, NotFound, ValidationRejected
from traffic_exchange.services.points_ledger import (
    adjust_points,
    credit_points,
    debit_points,
    get_points_history,
    grant_referral_bonus,
    recompute_points_balance,
)


def _register(db, now, referral_code=None):
    suffix = secrets.token_hex(4)
    return register_user(db, username=f"member_{suffix}", email=f"member_{suffix}@example.com", referral_code=referral_code, now=now)


def test_credit_and_debit_move_balance_with_ledger(db_session, user_factory, now):
    user = user_factory()
    credit_points(db_session, user.id, Decimal("10"), PointsTransactionKind.ADMIN_ADJUSTMENT, now=now)
    debit_points(db_session, user.id, Decimal("3.5"), PointsTransactionKind.CONVERSION, now=now)

    db_session.refresh(user)
    assert user.points_balance == Decimal("6.5")
    amounts = sorted(entry.amount for entry in get_points_history(db_session, user.id))
    assert amounts == [Decimal("-3.5"), Decimal("10")]
    assert recompute_points_balance(db_session, user.id).in_sync


def test_debit_cannot_overdraw(db_session, user_factory, now):
    user = user_factory()
    credit_points(db_session, user.id, Decimal("2"), PointsTransactionKind.ADMIN_ADJUSTMENT, now=now)
    with pytest.raises(InsufficientFunds):
        debit_points(db_session, user.id, Decimal("2.0001"), PointsTransactionKind.CONVERSION, now=now)

    db_session.refresh(user)
    assert user.points_balance == Decimal("2")
    assert db_session.query(PointsLedgerEntry).filter_by(user_id=user.id).count() == 1


def test_credit_unknown_user_raises_not_found(db_session, now):
    with pytest.raises(NotFound):
        credit_points(db_session, 987654321, Decimal("1"), PointsTransactionKind.ADMIN_ADJUSTMENT, now=now)


def test_zero_amounts_are_refused(db_session, user_factory, now):
    user = user_factory()
    with pytest.raises(ValueError):
        credit_points(db_session, user.id, Decimal("0"), PointsTransactionKind.ADMIN_ADJUSTMENT, now=now)
    with pytest.raises(ValueError):
        debit_points(db_session, user.id, Decimal("0"), PointsTransactionKind.ADMIN_ADJUSTMENT, now=now)


def test_adjust_points_signed(db_session, user_factory, now):
    user = user_factory()
    adjust_points(db_session, user.id, Decimal("5"), now=now)
    entry = adjust_points(db_session, user.id, Decimal("-2"), now=now)
    assert entry.kind == PointsTransactionKind.ADMIN_ADJUSTMENT
    assert entry.amount == Decimal("-2")
    with pytest.raises(InsufficientFunds):
        adjust_points(db_session, user.id, Decimal("-4"), now=now)
    db_session.refresh(user)
    assert user.points_balance == Decimal("3")


def test_referral_code_format():
    code = generate_referral_code()
    assert len(code) == REFERRAL_SETTINGS["code_length"]
    assert re.fullmatch(r"[A-Z0-9]+", code)


def test_registration_with_referral_credits_both_once(db_session, now):
    referrer = _register(db_session, now)
    referred = _register(db_session, now, referral_code=referrer.referral_code.lower())

    bonus = Decimal(str(REFERRAL_SETTINGS["bonus_points"]))
    db_session.refresh(referrer)
    assert referred.referred_by_id == referrer.id
    assert referred.points_balance == bonus
    assert referrer.points_balance == bonus
    assert db_session.query(ReferralBonus).filter_by(referred_user_id=referred.id).count() == 1
    entries = db_session.query(PointsLedgerEntry).filter_by(kind=PointsTransactionKind.REFERRAL_BONUS).filter(
        PointsLedgerEntry.user_id.in_([referrer.id, referred.id])
    ).all()
    assert len(entries) == 2

    # A retry of the grant cannot credit a second time
    with pytest.raises(Conflict) as exc:
        grant_referral_bonus(db_session, referred.id, now=now)
    assert exc.value.code == "referral_bonus_already_granted"
    db_session.refresh(referrer)
    assert referrer.points_balance == bonus

    assert [u.id for u in list_referrals(db_session, referrer.id)] == [referred.id]


def test_unknown_referral_code_is_ignored(db_session, now):
    user = _register(db_session, now, referral_code="NOPE00")
    assert user.referred_by_id is None
    assert user.points_balance == Decimal("0")
    assert is_valid_referral_code(db_session, "NOPE00") is None


def test_grant_without_referrer_raises_not_found(db_session, user_factory, now):
    user = user_factory()
    with pytest.raises(NotFound) as exc:
        grant_referral_bonus(db_session, user.id, now=now)
    assert exc.value.code == "referrer_not_found"


def test_duplicate_email_is_rejected(db_session, now):
    user = _register(db_session, now)
    with pytest.raises(Conflict) as exc:
        register_user(db_session, username=f"other_{secrets.token_hex(4)}", email=user.email.upper(), now=now)
    assert exc.value.code == "user_exists"


def test_convert_points_debits_points_and_locks_earnings(db_session, user_factory, now):
    user = user_factory()
    credit_points(db_session, user.id, Decimal("2500"), PointsTransactionKind.ADMIN_ADJUSTMENT, now=now)

    entry = convert_points(db_session, user.id, Decimal("2345"), now=now)

    assert entry.amount == Decimal("2.34")
    assert entry.status == EarningsStatus.LOCKED
    assert entry.source == EarningsSource.POINTS_CONVERSION
    db_session.refresh(user)
    assert user.points_balance == Decimal("155")
    assert user.earnings_locked == Decimal("2.34")
    assert recompute_points_balance(db_session, user.id).in_sync


def test_convert_points_too_small_or_unfunded_changes_nothing(db_session, user_factory, now):
    user = user_factory()
    credit_points(db_session, user.id, Decimal("500"), PointsTransactionKind.ADMIN_ADJUSTMENT, now=now)

    with pytest.raises(ValidationRejected) as exc:
        convert_points(db_session, user.id, Decimal("9"), now=now)
    assert exc.value.code == "conversion_too_small"

    with pytest.raises(InsufficientFunds):
        convert_points(db_session, user.id, Decimal("1000"), now=now)

    db_session.refresh(user)
    assert user.points_balance == Decimal("500")
    assert user.earnings_locked == Decimal("0")
    assert db_session.query(EarningsLedgerEntry).filter_by(user_id=user.id).count() == 0
