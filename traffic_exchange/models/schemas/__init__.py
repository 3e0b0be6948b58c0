from .base import ErrorResponse
from .views import (
    ViewStartRequest, ViewStartResponse, ViewCompleteRequest, ViewCompleteResponse, DailyTotalResponse
)
from .users import (
    UserRegister, UserRead, UserRegistered, ReferralRead, ReferralList, SiteCreate, SiteRead
)
from .ledger import (
    PointsEntryRead,
    EarningsEntryRead,
    PointsConversionRequest,
    PointsAdjustRequest,
    LockEarningsRequest,
    UnlockSweepResponse,
    AvailableBalanceResponse,
    DebitRequest,
    WithdrawalRead,
    BalanceCheckRead,
)
from .fraud import FraudFlagRead, FraudFlagResolve

__all__ = [
    # Base
    "ErrorResponse",

    # Views
    "ViewStartRequest",
    "ViewStartResponse",
    "ViewCompleteRequest",
    "ViewCompleteResponse",
    "DailyTotalResponse",

    # Users
    "UserRegister",
    "UserRead",
    "UserRegistered",
    "ReferralRead",
    "ReferralList",
    "SiteCreate",
    "SiteRead",

    # Ledgers
    "PointsEntryRead",
    "EarningsEntryRead",
    "PointsConversionRequest",
    "PointsAdjustRequest",
    "LockEarningsRequest",
    "UnlockSweepResponse",
    "AvailableBalanceResponse",
    "DebitRequest",
    "WithdrawalRead",
    "BalanceCheckRead",

    # Fraud
    "FraudFlagRead",
    "FraudFlagResolve",
]
