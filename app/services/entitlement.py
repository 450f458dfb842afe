"""
Entitlement evaluation: turns an account's trial window and mirrored
subscription into the access decision every gated endpoint consumes.

evaluate_entitlement() is pure; callers build the AccountSnapshot themselves
(build_account_snapshot() does it from the database) so the evaluator never
reads ambient state.

Fail-closed rules:
- a subscription lookup error means "not active", the trial is still honoured
- a missing trial_ends_at means no trial was ever granted
- a malformed window (ends before it starts) is treated like a missing one
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.retention_policy import ONE_DAY
from app.models.enums import AccountStatus, ProviderSubscriptionStatus
from app.models.subscription import Subscription
from app.models.user import User
from app.utils.timestamps import as_naive_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountSnapshot:
    account_id: int
    trial_started_at: Optional[datetime]
    trial_ends_at: Optional[datetime]
    subscription_status: Optional[ProviderSubscriptionStatus] = None
    account_status: AccountStatus = AccountStatus.TRIAL

    @property
    def is_malformed(self) -> bool:
        if self.trial_started_at is None or self.trial_ends_at is None:
            return False
        return as_naive_utc(self.trial_ends_at) < as_naive_utc(self.trial_started_at)

    @property
    def effective_trial_end(self) -> Optional[datetime]:
        """Trial end the evaluator trusts; None when absent or malformed."""
        if self.is_malformed:
            return None
        return as_naive_utc(self.trial_ends_at)


@dataclass(frozen=True)
class EntitlementDecision:
    is_trialing: bool
    is_active: bool
    is_trial_expired: bool
    trial_days_left: int
    trial_ends_at: Optional[datetime] = None

    @property
    def has_access(self) -> bool:
        return self.is_active or self.is_trialing

    @property
    def access_blocked(self) -> bool:
        return not self.has_access

    @property
    def is_expired(self) -> bool:
        return self.is_trial_expired and not self.is_active

    def as_dict(self) -> dict:
        return {
            "is_trialing": self.is_trialing,
            "is_active": self.is_active,
            "trial_days_left": self.trial_days_left,
            "trial_ends_at": self.trial_ends_at,
            "has_access": self.has_access,
            "is_expired": self.is_expired,
            "access_blocked": self.access_blocked,
        }


class AccountState(str, Enum):
    """Conceptual per-account lifecycle state."""
    TRIALING = "trialing"
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED_UNPAID = "expired_unpaid"


BLOCKED_DECISION = EntitlementDecision(
    is_trialing=False,
    is_active=False,
    is_trial_expired=True,
    trial_days_left=0,
)


def evaluate_entitlement(snapshot: AccountSnapshot, now: Optional[datetime] = None) -> EntitlementDecision:
    """Compute the access decision for `snapshot` at `now` (defaults to current UTC time)."""
    now = as_naive_utc(now) if now is not None else utcnow()
    trial_end = snapshot.effective_trial_end

    if trial_end is None:
        is_trialing = False
        is_trial_expired = True
        trial_days_left = 0
    else:
        is_trialing = now < trial_end
        is_trial_expired = not is_trialing
        trial_days_left = max(0, math.ceil((trial_end - now) / ONE_DAY))

    is_active = snapshot.subscription_status == ProviderSubscriptionStatus.ACTIVE

    return EntitlementDecision(
        is_trialing=is_trialing,
        is_active=is_active,
        is_trial_expired=is_trial_expired,
        trial_days_left=trial_days_left,
        trial_ends_at=trial_end,
    )


def account_state(decision: EntitlementDecision, snapshot: AccountSnapshot) -> AccountState:
    if decision.is_active:
        return AccountState.ACTIVE
    if decision.is_trialing:
        return AccountState.TRIALING
    if snapshot.account_status == AccountStatus.CANCELED:
        return AccountState.CANCELED
    return AccountState.EXPIRED_UNPAID


def build_account_snapshot(db: Session, user: User, fail_closed: bool = True) -> AccountSnapshot:
    """
    Snapshot the account plus its mirrored Stripe subscription.
    If the subscription lookup fails the snapshot has no subscription status,
    unless fail_closed is False (destructive callers), in which case the error propagates.
    """
    # Read account fields first; a rollback below would expire them
    account_id = user.id
    trial_started_at = user.trial_started_at
    trial_ends_at = user.trial_ends_at
    account_status = user.subscription_status

    subscription_status = None
    try:
        subscription = db.query(Subscription).filter(Subscription.user_id == account_id).first()
        if subscription is not None:
            subscription_status = subscription.status
        elif account_status == AccountStatus.ACTIVE:
            subscription_status = ProviderSubscriptionStatus.ACTIVE
    except SQLAlchemyError as e:
        if not fail_closed:
            raise
        logger.warning("[Entitlement] Subscription lookup failed for user %s, failing closed: %s", account_id, e)
        db.rollback()
        subscription_status = None

    return AccountSnapshot(
        account_id=account_id,
        trial_started_at=trial_started_at,
        trial_ends_at=trial_ends_at,
        subscription_status=subscription_status,
        account_status=account_status,
    )


def get_entitlement(db: Session, user: User, now: Optional[datetime] = None) -> EntitlementDecision:
    """
    Evaluate the account's entitlement and, best effort, persist the
    transition to `expired` on the account row.
    """
    snapshot = build_account_snapshot(db, user)
    decision = evaluate_entitlement(snapshot, now)
    record_expiry(db, user, snapshot, decision)
    return decision


def record_expiry(db: Session, user: User, snapshot: AccountSnapshot, decision: EntitlementDecision) -> None:
    """Best-effort write of the expired status; failures never change the decision."""
    if not decision.is_expired:
        return
    if snapshot.account_status in (AccountStatus.EXPIRED, AccountStatus.CANCELED):
        return
    try:
        user.subscription_status = AccountStatus.EXPIRED
        db.commit()
        logger.info("[Entitlement] User %s trial expired without subscription, marked expired", snapshot.account_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("[Entitlement] Could not mark user %s expired: %s", snapshot.account_id, e)
