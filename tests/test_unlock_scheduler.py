from datetime import timedelta
from decimal import Decimal

from traffic_exchange.jobs import unlock_scheduler
from traffic_exchange.jobs.unlock_scheduler import EarningsUnlockWorker
from traffic_exchange.models.db import EarningsLedgerEntry, EarningsSource, EarningsStatus
from traffic_exchange.services.earnings_ledger import lock_earnings


def test_run_once_unlocks_due_entries(db_session, user_factory, now):
    user = user_factory()
    entry = lock_earnings(db_session, user.id, Decimal("8"), EarningsSource.AD_REVENUE_SHARE, now=now)

    worker = EarningsUnlockWorker(interval_seconds=60, batch_size=2)
    assert worker.run_once(now=now + timedelta(days=15)) >= 1

    db_session.expire_all()
    assert db_session.get(EarningsLedgerEntry, entry.id).status == EarningsStatus.AVAILABLE
    assert worker.consecutive_failures == 0
    assert worker.snapshot()["last_run_at"] is not None


def test_failed_sweep_backs_off_then_recovers(monkeypatch):
    worker = EarningsUnlockWorker(interval_seconds=60)

    def _fail(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(unlock_scheduler, "unlock_due_earnings", _fail)
    assert worker.run_once() == 0
    assert worker.run_once() == 0
    assert worker.consecutive_failures == 2
    # Second retry: 1s * 2 with +/-10% jitter
    assert 1.8 <= worker.next_delay() <= 2.2

    monkeypatch.setattr(unlock_scheduler, "unlock_due_earnings", lambda *a, **k: 0)
    assert worker.run_once() == 0
    assert worker.consecutive_failures == 0
    assert worker.next_delay() == 60


def test_worker_thread_starts_and_stops(monkeypatch):
    monkeypatch.setattr(unlock_scheduler, "unlock_due_earnings", lambda *a, **k: 0)
    worker = EarningsUnlockWorker(interval_seconds=3600)
    worker.start()
    assert worker.is_running()
    worker.stop(timeout=5)
    assert not worker.is_running()
