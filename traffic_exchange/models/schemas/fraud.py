"""
Pydantic schemas for fraud flag review.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import FraudSeverity, RejectionReason

class FraudFlagRead(BaseModel):
    id: int
    user_id: int
    view_session_id: Optional[int]
    reason_code: RejectionReason
    severity: FraudSeverity
    ip_address: Optional[str]
    created_at: datetime
    is_resolved: bool
    resolved_by: Optional[str]
    resolved_at: Optional[datetime]
    resolution_notes: Optional[str]

    model_config = ConfigDict(from_attributes=True)

class FraudFlagResolve(BaseModel):
    """
    Schema for resolving fraud flags.
    """
    resolved_by: str = Field(min_length=1, max_length=100)
    resolution_notes: Optional[str] = Field(None, max_length=1000)
