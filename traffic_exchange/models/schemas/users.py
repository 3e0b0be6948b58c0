"""
Pydantic schemas for members, referrals and sites.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, EmailStr, ConfigDict, field_validator
from ..db.enums import UserRole

class UserRegister(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: EmailStr
    referral_code: Optional[str] = Field(None, max_length=16)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = v.strip()
        if not v.replace("_", "").replace("-", "").isalnum():
            raise ValueError("username may only contain letters, digits, '-' and '_'")
        return v

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "username": "surfer_01",
            "email": "surfer@example.com",
            "referral_code": "AB12CD"
        }
    })

class UserRead(BaseModel):
    id: int
    username: str
    email: str
    role: UserRole
    is_active: bool
    referral_code: str
    referred_by_id: Optional[int]
    points_balance: Decimal
    earnings_available: Decimal
    earnings_locked: Decimal
    fraud_flag_count: int
    last_earning_at: Optional[datetime]
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

class UserRegistered(UserRead):
    """Returned once at registration; the only time the API key is shown."""
    api_key: str

class ReferralRead(BaseModel):
    id: int
    username: str
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

class ReferralList(BaseModel):
    count: int
    list: List[ReferralRead]
    bonus_per_referral: Decimal

class SiteCreate(BaseModel):
    url: str = Field(min_length=8, max_length=2048)
    points_per_view: Optional[Decimal] = Field(None, gt=0)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v

class SiteRead(BaseModel):
    id: int
    owner_id: int
    url: str
    points_per_view: Decimal
    is_active: bool
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)
