"""
Pydantic schemas for points and earnings ledger operations.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict, field_validator
from ..db.enums import EarningsSource, EarningsStatus, PointsTransactionKind

class PointsEntryRead(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    kind: PointsTransactionKind
    view_session_id: Optional[int]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class EarningsEntryRead(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    status: EarningsStatus
    source: EarningsSource
    unlock_at: datetime
    created_at: datetime
    unlocked_at: Optional[datetime]
    withdrawn_at: Optional[datetime]
    split_from_id: Optional[int]

    model_config = ConfigDict(from_attributes=True)

class PointsConversionRequest(BaseModel):
    points: Decimal = Field(gt=0, max_digits=18, decimal_places=4)

class PointsAdjustRequest(BaseModel):
    user_id: int = Field(gt=0)
    amount: Decimal = Field(max_digits=18, decimal_places=4, description="Signed; negative debits")

    @field_validator("amount")
    @classmethod
    def validate_non_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("amount must be non-zero")
        return v

class LockEarningsRequest(BaseModel):
    user_id: int = Field(gt=0)
    amount: Decimal = Field(gt=0, max_digits=18, decimal_places=2)
    source: EarningsSource

    model_config = ConfigDict(json_schema_extra={
        "example": {"user_id": 7, "amount": "12.50", "source": "ad_revenue_share"}
    })

class UnlockSweepResponse(BaseModel):
    unlocked: int
    as_of: datetime

class AvailableBalanceResponse(BaseModel):
    user_id: int
    available: Decimal

class DebitRequest(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=18, decimal_places=2)

class WithdrawalRead(BaseModel):
    user_id: int
    amount: Decimal
    consumed_entry_ids: List[int]
    change_entry_id: Optional[int]

class BalanceCheckRead(BaseModel):
    user_id: int
    points_ledger_total: Decimal
    points_balance: Decimal
    earnings_ledger_available: Decimal
    earnings_available: Decimal
    earnings_ledger_locked: Decimal
    earnings_locked: Decimal
    in_sync: bool
