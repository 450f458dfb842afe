"""
Closed status enumerations shared by models, services and schemas.
"""
from enum import Enum
from typing import Optional

from app.core.retention_policy import WARNING_THRESHOLDS_DAYS


class AccountStatus(str, Enum):
    """Account-level subscription status stored on the users row."""
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"


class ProviderSubscriptionStatus(str, Enum):
    """Stripe subscription status as mirrored in the subscriptions table."""
    TRIALING = "trialing"
    ACTIVE = "active"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    PAST_DUE = "past_due"

    @classmethod
    def from_provider(cls, raw: Optional[str]) -> "ProviderSubscriptionStatus":
        """
        Map a raw Stripe status onto the closed set.
        Anything unrecognised becomes INCOMPLETE so it can never grant access.
        """
        value = (raw or "").strip().lower()
        aliases = {
            "cancelled": cls.CANCELED,
            "incomplete_expired": cls.CANCELED,
            "paused": cls.CANCELED,
            "unpaid": cls.PAST_DUE,
        }
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            return cls.INCOMPLETE


class WarningStage(str, Enum):
    """Deletion warning emails, least to most urgent."""
    FIRST = "first"
    SECOND = "second"
    FINAL = "final"

    @property
    def threshold_days(self) -> int:
        return WARNING_THRESHOLDS_DAYS[self.value]

    @property
    def urgency(self) -> int:
        return _STAGE_ORDER.index(self)

    @property
    def sent_at_field(self) -> str:
        return f"{self.value}_warning_sent_at"

    @classmethod
    def by_urgency(cls, most_urgent_first: bool = True):
        return list(reversed(_STAGE_ORDER)) if most_urgent_first else list(_STAGE_ORDER)


_STAGE_ORDER = [WarningStage.FIRST, WarningStage.SECOND, WarningStage.FINAL]


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
