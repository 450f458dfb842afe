"""
Mirror Stripe subscription state into the local subscriptions table and keep
the account status (and any pending deletion) in line with it.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.models.enums import AccountStatus, ProviderSubscriptionStatus
from app.models.subscription import Subscription
from app.models.user import User
from app.services.data_retention import cancel_scheduled_deletion

logger = logging.getLogger(__name__)


def _timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _first_item(stripe_sub: dict) -> dict:
    items = (stripe_sub.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _price_id(stripe_sub: dict) -> Optional[str]:
    price = _first_item(stripe_sub).get("price") or {}
    return price.get("id")


def _period_end(stripe_sub: dict) -> Optional[datetime]:
    # Newer Stripe API versions moved current_period_end onto the subscription item
    return _timestamp(stripe_sub.get("current_period_end") or _first_item(stripe_sub).get("current_period_end"))


def account_status_for(provider_status: ProviderSubscriptionStatus, current: AccountStatus) -> AccountStatus:
    """Account-level status implied by a provider status change."""
    if provider_status == ProviderSubscriptionStatus.ACTIVE:
        return AccountStatus.ACTIVE
    if provider_status == ProviderSubscriptionStatus.CANCELED:
        return AccountStatus.CANCELED
    if current == AccountStatus.ACTIVE:
        # incomplete / past_due: payment problem, no paid access until it resolves
        return AccountStatus.CANCELED
    return current


def find_user_for_subscription(db: Session, stripe_sub: dict) -> Optional[User]:
    """Resolve the account by metadata user_id, then by an existing mirror row."""
    metadata = stripe_sub.get("metadata") or {}
    user_id = metadata.get("user_id")
    if user_id is not None:
        try:
            user = db.query(User).filter(User.id == int(user_id)).first()
            if user:
                return user
        except (TypeError, ValueError):
            pass

    mirror = None
    if stripe_sub.get("id"):
        mirror = db.query(Subscription).filter(
            Subscription.stripe_subscription_id == stripe_sub["id"]
        ).first()
    if mirror is None and stripe_sub.get("customer"):
        mirror = db.query(Subscription).filter(
            Subscription.stripe_customer_id == stripe_sub["customer"]
        ).first()
    return mirror.user if mirror else None


def sync_subscription(db: Session, user: User, stripe_sub: dict) -> Subscription:
    """
    Upsert the mirror from a Stripe subscription object and commit.
    An active subscription cancels any scheduled deletion for the account.
    """
    status_val = ProviderSubscriptionStatus.from_provider(stripe_sub.get("status"))

    subscription = db.query(Subscription).filter(Subscription.user_id == user.id).first()
    if subscription is None:
        subscription = Subscription(user_id=user.id)
        db.add(subscription)

    subscription.stripe_subscription_id = stripe_sub.get("id")
    subscription.stripe_customer_id = stripe_sub.get("customer")
    subscription.price_id = _price_id(stripe_sub) or subscription.price_id
    subscription.status = status_val
    subscription.current_period_end = _period_end(stripe_sub)
    subscription.cancel_at_period_end = bool(stripe_sub.get("cancel_at_period_end"))

    user.subscription_status = account_status_for(status_val, user.subscription_status)
    db.commit()
    db.refresh(subscription)
    logger.info("[Subscription] User %s subscription %s is %s", user.id, subscription.stripe_subscription_id, status_val.value)

    if status_val == ProviderSubscriptionStatus.ACTIVE:
        cancel_scheduled_deletion(db, user.id)
    return subscription
