"""
Pydantic schemas for the view start/complete flow.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

class ViewStartRequest(BaseModel):
    site_id: int = Field(gt=0)

    model_config = ConfigDict(json_schema_extra={"example": {"site_id": 42}})

class ViewStartResponse(BaseModel):
    view_session_id: int
    session_token: str
    started_at: datetime

class ViewCompleteRequest(BaseModel):
    session_token: str = Field(min_length=1, max_length=64)
    site_id: Optional[int] = Field(None, gt=0, description="Site the caller believes it viewed; must match the session")

    model_config = ConfigDict(json_schema_extra={
        "example": {"session_token": "m3V9x...", "site_id": 42}
    })

class ViewCompleteResponse(BaseModel):
    view_session_id: int
    points_awarded: Decimal
    completed_at: datetime

class DailyTotalResponse(BaseModel):
    day: date
    points: Decimal
    cap: Decimal
