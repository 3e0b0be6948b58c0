"""Racing completions, sweeps and grants, each thread with its own session."""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

from traffic_exchange.models.db import EarningsSource, PointsLedgerEntry, PointsTransactionKind, ReferralBonus, User
from traffic_exchange.services import view_sessions
from traffic_exchange.services.earnings_ledger import lock_earnings, unlock_due_earnings
from traffic_exchange.services.errors import LedgerError
from traffic_exchange.services.fraud_checks import RequestMeta
from traffic_exchange.services.points_ledger import grant_referral_bonus

WORKERS = 6


def _race(session_factory, calls):
    """Run each callable(db) in its own thread and session, released together."""
    barrier = threading.Barrier(len(calls))

    def _run(call):
        db = session_factory()
        try:
            barrier.wait(timeout=10)
            try:
                return "ok", call(db)
            except LedgerError as e:
                return e.code, e
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(_run, calls))


def _meta(ip):
    return RequestMeta(ip=ip, user_agent="Mozilla/5.0")


def _outcomes(results):
    return sorted(code for code, _ in results)


def test_same_token_is_credited_once(db_session, session_factory, user_factory, site_factory, unique_ip, now):
    user = user_factory()
    site = site_factory()
    session = view_sessions.start_view(db_session, user_id=user.id, site_id=site.id, meta=_meta(unique_ip()), now=now)
    token, user_id = session.session_token, user.id
    at = now + timedelta(seconds=30)

    calls = [
        (lambda ip: lambda db: view_sessions.complete_view(db, user_id=user_id, session_token=token, meta=_meta(ip), now=at))(unique_ip())
        for _ in range(WORKERS)
    ]
    results = _race(session_factory, calls)

    assert _outcomes(results).count("ok") == 1
    assert all(code in ("ok", "session_already_completed") for code, _ in results)
    db_session.expire_all()
    assert db_session.query(PointsLedgerEntry).filter_by(view_session_id=session.id, kind=PointsTransactionKind.VIEW_EARN).count() == 1
    db_session.refresh(user)
    assert user.points_balance == Decimal("1")


def test_one_credit_per_ip_across_users(db_session, session_factory, user_factory, site_factory, unique_ip, now):
    site = site_factory()
    ip = unique_ip()
    pairs = []
    for _ in range(WORKERS):
        user = user_factory()
        session = view_sessions.start_view(db_session, user_id=user.id, site_id=site.id, meta=_meta(ip), now=now)
        pairs.append((user.id, session.session_token))
    at = now + timedelta(seconds=30)

    calls = [
        (lambda uid, tok: lambda db: view_sessions.complete_view(db, user_id=uid, session_token=tok, meta=_meta(ip), now=at))(uid, tok)
        for uid, tok in pairs
    ]
    results = _race(session_factory, calls)

    outcomes = _outcomes(results)
    assert outcomes.count("ok") == 1
    assert outcomes.count("ip_cooldown_active") == WORKERS - 1


def test_daily_cap_is_crossed_at_most_once(db_session, session_factory, user_factory, site_factory, unique_ip, now):
    user = user_factory()
    big_site = site_factory(points_per_view=Decimal("99999.5"))
    small_site = site_factory()
    ip = unique_ip()
    first = view_sessions.start_view(db_session, user_id=user.id, site_id=big_site.id, meta=_meta(ip), now=now)
    view_sessions.complete_view(db_session, user_id=user.id, session_token=first.session_token, meta=_meta(ip), now=now + timedelta(seconds=30))

    tokens = []
    for _ in range(WORKERS):
        s = view_sessions.start_view(db_session, user_id=user.id, site_id=small_site.id, meta=_meta(ip), now=now)
        tokens.append((s.session_token, unique_ip()))
    user_id = user.id
    at = now + timedelta(seconds=40)

    calls = [
        (lambda tok, vip: lambda db: view_sessions.complete_view(db, user_id=user_id, session_token=tok, meta=_meta(vip), now=at))(tok, vip)
        for tok, vip in tokens
    ]
    results = _race(session_factory, calls)

    outcomes = _outcomes(results)
    assert outcomes.count("ok") == 1
    assert outcomes.count("daily_cap_reached") == WORKERS - 1
    assert view_sessions.get_daily_earned_total(db_session, user_id, now.date()) == Decimal("100000.5")


def test_concurrent_unlock_sweeps_move_each_entry_once(db_session, session_factory, user_factory, now):
    user = user_factory()
    base = now - timedelta(days=100)
    entries = [
        lock_earnings(db_session, user.id, Decimal("1.25"), EarningsSource.AD_REVENUE_SHARE, now=base + timedelta(minutes=i))
        for i in range(12)
    ]
    sweep_at = base + timedelta(days=16)

    results = _race(session_factory, [lambda db: unlock_due_earnings(db, now=sweep_at, batch_size=5) for _ in range(4)])

    assert all(code == "ok" for code, _ in results)
    assert sum(count for _, count in results) == len(entries)
    db_session.refresh(user)
    assert user.earnings_available == Decimal("15.00")
    assert user.earnings_locked == Decimal("0.00")


def test_referral_bonus_granted_once_under_retries(db_session, session_factory, user_factory, now):
    referrer = user_factory()
    referred = user_factory(referred_by_id=referrer.id)
    referred_id = referred.id

    results = _race(session_factory, [lambda db: grant_referral_bonus(db, referred_id, now=now) for _ in range(WORKERS)])

    outcomes = _outcomes(results)
    assert outcomes.count("ok") == 1
    assert outcomes.count("referral_bonus_already_granted") == WORKERS - 1
    db_session.expire_all()
    assert db_session.query(ReferralBonus).filter_by(referred_user_id=referred_id).count() == 1
    assert db_session.get(User, referrer.id).points_balance == Decimal("50")
    assert db_session.get(User, referred_id).points_balance == Decimal("50")
