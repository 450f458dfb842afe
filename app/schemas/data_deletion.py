from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class WarningsSent(BaseModel):
    first: int = 0
    second: int = 0
    final: int = 0


class AccountErrorResponse(BaseModel):
    account_id: int
    step: str
    error: str


class DeletionRunResponse(BaseModel):
    scheduled: int
    warnings_sent: WarningsSent = Field(alias="warningsSent")
    deleted: int
    cancelled: int = 0
    errors: List[AccountErrorResponse] = []

    class Config:
        populate_by_name = True


class WarningFlags(BaseModel):
    first: bool = False
    second: bool = False
    final: bool = False


class DeletionStatusResponse(BaseModel):
    is_scheduled_for_deletion: bool
    scheduled_deletion_date: Optional[datetime] = None
    days_until_deletion: int = 0
    warnings_sent: WarningFlags
    can_cancel_deletion: bool


class CancelDeletionResponse(BaseModel):
    cancelled: bool
