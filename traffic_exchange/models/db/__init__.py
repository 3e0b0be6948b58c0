from .users import User
from .sites import Site
from .view_sessions import ViewSession
from .points_ledger import PointsLedgerEntry, ReferralBonus
from .earnings_ledger import EarningsLedgerEntry
from .fraud_flags import FraudFlag
from .rate_limits import IpCooldownSlot, DailyEarningCounter
from .enums import (
    UserRole,
    ViewSessionState,
    RejectionReason,
    PointsTransactionKind,
    EarningsStatus,
    EarningsSource,
    FraudSeverity,
)

__all__ = [
    "User",
    "Site",
    "ViewSession",
    "PointsLedgerEntry",
    "ReferralBonus",
    "EarningsLedgerEntry",
    "FraudFlag",
    "IpCooldownSlot",
    "DailyEarningCounter",
    "UserRole",
    "ViewSessionState",
    "RejectionReason",
    "PointsTransactionKind",
    "EarningsStatus",
    "EarningsSource",
    "FraudSeverity",
]
