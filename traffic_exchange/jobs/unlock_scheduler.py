"""Background worker that periodically unlocks earnings past their holding period."""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from traffic_exchange.config import UNLOCK_SCHEDULER_SETTINGS
from traffic_exchange.database import SessionLocal
from traffic_exchange.services.earnings_ledger import unlock_due_earnings
from traffic_exchange.utils import get_logger
from traffic_exchange.utils.backoff import compute_backoff_seconds
from traffic_exchange.utils.time import format_elapsed, utc_now

logger = get_logger(__name__)


class EarningsUnlockWorker:
    def __init__(self, *, interval_seconds: Optional[float] = None, batch_size: Optional[int] = None):
        self.interval_seconds = float(interval_seconds if interval_seconds is not None else UNLOCK_SCHEDULER_SETTINGS["interval_seconds"])  # type: ignore[arg-type]
        self.batch_size = int(batch_size if batch_size is not None else UNLOCK_SCHEDULER_SETTINGS["batch_size"])  # type: ignore[arg-type]
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self.consecutive_failures = 0
        self.last_run_at: datetime | None = None
        self.last_unlocked = 0

    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="earnings-unlock-worker", daemon=True)
        self._thread.start()
        logger.info("Earnings unlock worker started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        logger.info("Earnings unlock worker stop requested")
        if timeout is not None and self._thread is not None:
            self._thread.join(timeout)

    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def next_delay(self) -> float:
        if self.consecutive_failures:
            return compute_backoff_seconds(self.consecutive_failures)
        return self.interval_seconds

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.next_delay())

    def run_once(self, now: Optional[datetime] = None) -> int:
        """Run one sweep in its own session. Failures are logged, counted and return 0."""
        started = utc_now()
        session: Session = SessionLocal()
        try:
            unlocked = unlock_due_earnings(session, now=now, batch_size=self.batch_size)
        except Exception as e:
            self.consecutive_failures += 1
            logger.error(
                "Unlock sweep failed",
                error=str(e),
                error_type=type(e).__name__,
                consecutive_failures=self.consecutive_failures,
                exc_info=True,
            )
            return 0
        finally:
            session.close()
        self.consecutive_failures = 0
        self.last_run_at = started
        self.last_unlocked = unlocked
        logger.info("Unlock sweep completed", unlocked=unlocked, elapsed=format_elapsed(started))
        return unlocked

    def snapshot(self) -> dict:
        return {
            "running": self.is_running(),
            "interval_seconds": self.interval_seconds,
            "consecutive_failures": self.consecutive_failures,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_unlocked": self.last_unlocked,
        }


__all__ = ["EarningsUnlockWorker"]
