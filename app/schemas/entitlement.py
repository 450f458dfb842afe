from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class EntitlementResponse(BaseModel):
    is_trialing: bool
    is_active: bool
    trial_days_left: int
    trial_ends_at: Optional[datetime] = None
    has_access: bool
    is_expired: bool
    access_blocked: bool
    state: str
    poll_interval_seconds: int


class CheckoutSessionRequest(BaseModel):
    price_id: str


class VerifyCheckoutRequest(BaseModel):
    session_id: str
