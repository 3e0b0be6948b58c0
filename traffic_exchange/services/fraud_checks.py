"""View fraud signal evaluation.

A completion request is wrapped in an immutable ``ViewCandidate`` and run
through a fixed, ordered pipeline of check objects. Each check returns a
``CheckResult``; the first rejection short-circuits the pipeline.

Order (fixed):
  1. ProxyHeaderCheck      -> proxy_detected (flags the user)
  2. DailyCapCheck         -> daily_cap_reached
  3. IpCooldownCheck       -> ip_cooldown_active
  4. SessionOwnershipCheck -> invalid_session
  5. DwellTimeCheck        -> duration_too_short (terminal for the session)
  6. ReplayGuardCheck      -> session_already_completed

Checks 2 and 3 reserve their rate-limit slot as a side effect of admitting
(conditional UPDATE). They run inside the caller's transaction, so a later
rejection followed by rollback releases them again.

Checks carry no persistence of their own beyond those reservations; the
session service applies rejection side effects (fraud flags, terminal state)
after rolling the pipeline transaction back.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Mapping, Optional, Protocol, Sequence

from sqlalchemy.orm import Session

from traffic_exchange.config import PROXY_DETECTION_SETTINGS, VIEW_VALIDATION_SETTINGS
from traffic_exchange.models.db.enums import FraudSeverity, RejectionReason, ViewSessionState
from traffic_exchange.utils.logger import get_logger
from traffic_exchange.utils.ratelimiter import ViewRateLimiter, rate_limiter
from traffic_exchange.utils.time import ensure_utc

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    ip: str
    user_agent: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only copy of a ViewSession row taken before the pipeline runs."""
    id: int
    session_token: str
    viewer_id: int
    site_id: int
    state: ViewSessionState
    started_at: datetime


@dataclass(frozen=True)
class ViewCandidate:
    user_id: int
    session_token: str
    meta: RequestMeta
    now: datetime
    day: date
    points: Decimal
    session: Optional[SessionSnapshot] = None
    claimed_site_id: Optional[int] = None


@dataclass(frozen=True)
class CheckResult:
    admitted: bool
    reason: Optional[RejectionReason] = None
    message: str = ""
    # Session moves to `rejected` (only meaningful for a pending session).
    terminal: bool = False
    # Increment the user's fraud-flag counter.
    flag_user: bool = False
    # Write a FraudFlag audit row with this severity.
    severity: Optional[FraudSeverity] = None

    @classmethod
    def admit(cls) -> "CheckResult":
        return cls(admitted=True)

    @classmethod
    def reject(cls, reason: RejectionReason, message: str, **kwargs) -> "CheckResult":
        return cls(admitted=False, reason=reason, message=message, **kwargs)


class ProxyEvaluator(Protocol):
    """Capability interface for proxy/VPN detection. Real fraud scoring plugs in here."""

    def is_proxy(self, meta: RequestMeta) -> bool: ...


class HeaderProxyEvaluator:
    """Flags requests carrying forwarding headers or proxy-ish user-agent markers."""

    def __init__(self, headers: Optional[Sequence[str]] = None, user_agent_markers: Optional[Sequence[str]] = None):
        self.headers = [h.lower() for h in (headers if headers is not None else PROXY_DETECTION_SETTINGS["headers"])]
        self.user_agent_markers = [
            m.lower() for m in (user_agent_markers if user_agent_markers is not None else PROXY_DETECTION_SETTINGS["user_agent_markers"])
        ]

    def is_proxy(self, meta: RequestMeta) -> bool:
        present = {k.lower() for k in meta.headers.keys()}
        if any(h in present for h in self.headers):
            return True
        ua = (meta.user_agent or "").lower()
        return any(marker in ua for marker in self.user_agent_markers)


class FraudCheck(Protocol):
    name: str

    def evaluate(self, db: Session, candidate: ViewCandidate) -> CheckResult: ...


class ProxyHeaderCheck:
    name = "proxy"

    def __init__(self, evaluator: Optional[ProxyEvaluator] = None):
        self.evaluator = evaluator or HeaderProxyEvaluator()

    def evaluate(self, db: Session, candidate: ViewCandidate) -> CheckResult:
        if self.evaluator.is_proxy(candidate.meta):
            return CheckResult.reject(
                RejectionReason.PROXY_DETECTED,
                "Proxy or VPN detected",
                flag_user=True,
                severity=FraudSeverity.MEDIUM,
            )
        return CheckResult.admit()


class DailyCapCheck:
    name = "daily_cap"

    def __init__(self, limiter: ViewRateLimiter, cap: Optional[Decimal] = None):
        self.limiter = limiter
        self.cap = cap

    def evaluate(self, db: Session, candidate: ViewCandidate) -> CheckResult:
        cap = self.cap if self.cap is not None else Decimal(str(VIEW_VALIDATION_SETTINGS["daily_points_cap"]))
        if not self.limiter.admit_user_daily(db, candidate.user_id, candidate.points, cap=cap, day=candidate.day):
            return CheckResult.reject(RejectionReason.DAILY_CAP_REACHED, "Daily earning limit reached")
        return CheckResult.admit()


class IpCooldownCheck:
    name = "ip_cooldown"

    def __init__(self, limiter: ViewRateLimiter, window_seconds: Optional[int] = None):
        self.limiter = limiter
        self.window_seconds = window_seconds

    def evaluate(self, db: Session, candidate: ViewCandidate) -> CheckResult:
        window = self.window_seconds if self.window_seconds is not None else int(VIEW_VALIDATION_SETTINGS["ip_cooldown_seconds"])  # type: ignore[arg-type]
        session_id = candidate.session.id if candidate.session else None
        if not self.limiter.admit_ip(db, candidate.meta.ip, now=candidate.now, window_seconds=window, view_session_id=session_id):
            return CheckResult.reject(
                RejectionReason.IP_COOLDOWN_ACTIVE,
                "This IP already earned a view recently; try again later",
            )
        return CheckResult.admit()


class SessionOwnershipCheck:
    name = "session"

    def __init__(self, max_pending_seconds: Optional[int] = None):
        self.max_pending_seconds = max_pending_seconds

    def evaluate(self, db: Session, candidate: ViewCandidate) -> CheckResult:
        session = candidate.session
        if session is None or session.viewer_id != candidate.user_id:
            return CheckResult.reject(RejectionReason.INVALID_SESSION, "Invalid session")
        if candidate.claimed_site_id is not None and candidate.claimed_site_id != session.site_id:
            return CheckResult.reject(RejectionReason.INVALID_SESSION, "Session does not belong to this site")
        max_age = self.max_pending_seconds
        if max_age is None:
            max_age = VIEW_VALIDATION_SETTINGS.get("max_pending_seconds")  # type: ignore[assignment]
        if (
            max_age is not None
            and session.state == ViewSessionState.PENDING
            and candidate.now - ensure_utc(session.started_at) > timedelta(seconds=int(max_age))
        ):
            return CheckResult.reject(RejectionReason.INVALID_SESSION, "Session expired")
        return CheckResult.admit()


class DwellTimeCheck:
    name = "dwell"

    def __init__(self, min_dwell_seconds: Optional[int] = None):
        self.min_dwell_seconds = min_dwell_seconds

    def evaluate(self, db: Session, candidate: ViewCandidate) -> CheckResult:
        session = candidate.session
        # Completed sessions fall through to the replay guard.
        if session is None or session.state != ViewSessionState.PENDING:
            return CheckResult.admit()
        min_dwell = self.min_dwell_seconds if self.min_dwell_seconds is not None else int(VIEW_VALIDATION_SETTINGS["min_dwell_seconds"])  # type: ignore[arg-type]
        if candidate.now - ensure_utc(session.started_at) < timedelta(seconds=min_dwell):
            return CheckResult.reject(
                RejectionReason.DURATION_TOO_SHORT,
                "View duration too short",
                terminal=True,
                severity=FraudSeverity.LOW,
            )
        return CheckResult.admit()


class ReplayGuardCheck:
    name = "replay"

    def evaluate(self, db: Session, candidate: ViewCandidate) -> CheckResult:
        session = candidate.session
        if session is not None and session.state != ViewSessionState.PENDING:
            return CheckResult.reject(RejectionReason.SESSION_ALREADY_COMPLETED, "Session already completed")
        return CheckResult.admit()


class FraudPipeline:
    def __init__(self, checks: Sequence[FraudCheck]):
        self.checks = list(checks)

    def run(self, db: Session, candidate: ViewCandidate) -> CheckResult:
        for check in self.checks:
            result = check.evaluate(db, candidate)
            if not result.admitted:
                logger.info(
                    "View rejected by fraud check",
                    check=check.name,
                    reason=result.reason.value if result.reason else None,
                    user_id=candidate.user_id,
                    ip_address=candidate.meta.ip,
                )
                return result
        return CheckResult.admit()


def default_pipeline(
    *,
    proxy_evaluator: Optional[ProxyEvaluator] = None,
    limiter: Optional[ViewRateLimiter] = None,
) -> FraudPipeline:
    limiter = limiter or rate_limiter
    return FraudPipeline([
        ProxyHeaderCheck(proxy_evaluator),
        DailyCapCheck(limiter),
        IpCooldownCheck(limiter),
        SessionOwnershipCheck(),
        DwellTimeCheck(),
        ReplayGuardCheck(),
    ])


__all__ = [
    "RequestMeta",
    "SessionSnapshot",
    "ViewCandidate",
    "CheckResult",
    "ProxyEvaluator",
    "HeaderProxyEvaluator",
    "ProxyHeaderCheck",
    "DailyCapCheck",
    "IpCooldownCheck",
    "SessionOwnershipCheck",
    "DwellTimeCheck",
    "ReplayGuardCheck",
    "FraudPipeline",
    "default_pipeline",
]
