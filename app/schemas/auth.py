from pydantic import BaseModel, EmailStr
from typing import Optional
from datetime import datetime


class UserSyncRequest(BaseModel):
    id: str  # Supabase user ID
    email: EmailStr
    first_name: Optional[str] = None  # From Supabase user metadata
    last_name: Optional[str] = None  # From Supabase user metadata


class UserResponse(BaseModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    theme_preference: str
    subscription_status: str
    trial_started_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    theme_preference: Optional[str] = None
