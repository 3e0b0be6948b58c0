"""
Base schemas used across the application.
"""
from typing import Optional, Any, Dict
from pydantic import BaseModel, Field

class ErrorResponse(BaseModel):
    """Body returned for every domain error (see exception handlers in main)."""
    success: bool = False
    code: str = Field(description="Stable machine-readable error code, e.g. 'ip_cooldown_active'")
    message: str
    request_id: str
    details: Optional[Dict[str, Any]] = None
