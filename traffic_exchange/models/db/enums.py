"""Central Enum definitions for core domain states.

Shared by DB models, schemas and the validation pipeline so state names and
reason codes never drift between layers.
"""
from __future__ import annotations
import enum


class UserRole(str, enum.Enum):
    MEMBER = "MEMBER"
    ADMIN = "ADMIN"

# ------------------------- View session lifecycle ------------------------- #

class ViewSessionState(str, enum.Enum):
    PENDING = "pending"
    VALID = "valid"
    REJECTED = "rejected"

class RejectionReason(str, enum.Enum):
    PROXY_DETECTED = "proxy_detected"
    DAILY_CAP_REACHED = "daily_cap_reached"
    IP_COOLDOWN_ACTIVE = "ip_cooldown_active"
    INVALID_SESSION = "invalid_session"
    DURATION_TOO_SHORT = "duration_too_short"
    SESSION_ALREADY_COMPLETED = "session_already_completed"

# --------------------------------- Ledgers -------------------------------- #

class PointsTransactionKind(str, enum.Enum):
    VIEW_EARN = "view_earn"
    REFERRAL_BONUS = "referral_bonus"
    CONVERSION = "conversion"
    ADMIN_ADJUSTMENT = "admin_adjustment"

class EarningsStatus(str, enum.Enum):
    LOCKED = "locked"
    AVAILABLE = "available"
    WITHDRAWN = "withdrawn"
    CANCELLED = "cancelled"

class EarningsSource(str, enum.Enum):
    AD_REVENUE_SHARE = "ad_revenue_share"
    REFERRAL_COMMISSION = "referral_comm"
    BONUS = "bonus"
    POINTS_CONVERSION = "points_conversion"

# ---------------------------------- Fraud --------------------------------- #

class FraudSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

__all__ = [
    "UserRole",
    "ViewSessionState",
    "RejectionReason",
    "PointsTransactionKind",
    "EarningsStatus",
    "EarningsSource",
    "FraudSeverity",
]
