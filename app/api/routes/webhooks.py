"""
Webhooks for the payment provider (Stripe).
Stripe is the source of truth for subscription state; this keeps the local
mirror and the account status in sync with it.
"""
import json
import logging

import stripe
from fastapi import APIRouter, Request, HTTPException, status, Depends
from sqlalchemy.orm import Session
from app.core.config import settings
from app.db.session import get_db
from app.models.subscription import Subscription
from app.models.user import User
from app.services.subscription_sync import find_user_for_subscription, sync_subscription

router = APIRouter()
logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS = (
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
)


def _verify_stripe_signature(payload: bytes, sig_header: str | None) -> None:
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("[Webhook] STRIPE_WEBHOOK_SECRET is not set; rejecting webhook")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured"
        )
    try:
        stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("[Webhook] Invalid Stripe signature: %s", e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature"
        )


@router.post("/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Stripe webhook. Register this URL in the Stripe dashboard:
    https://your-backend.com/webhooks/stripe
    """
    payload = await request.body()
    _verify_stripe_signature(payload, request.headers.get("stripe-signature"))

    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    logger.info("[Webhook] Stripe event %s (%s)", event_type, event.get("id"))

    if event_type == "checkout.session.completed":
        _handle_checkout_completed(db, obj)
    elif event_type in SUBSCRIPTION_EVENTS:
        _handle_subscription_event(db, obj)

    return {"status": "success"}


def _handle_checkout_completed(db: Session, session: dict) -> None:
    """
    Link the Stripe customer to the account as soon as checkout finishes.
    Subscription status itself arrives with customer.subscription.* events.
    """
    metadata = session.get("metadata") or {}
    try:
        user_id = int(metadata.get("user_id"))
    except (TypeError, ValueError):
        logger.warning("[Webhook] checkout.session.completed without a usable user_id")
        return

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return

    subscription = db.query(Subscription).filter(Subscription.user_id == user.id).first()
    if subscription is None:
        subscription = Subscription(user_id=user.id)
        db.add(subscription)
    subscription.stripe_customer_id = session.get("customer") or subscription.stripe_customer_id
    if isinstance(session.get("subscription"), str):
        subscription.stripe_subscription_id = session["subscription"]
    db.commit()


def _handle_subscription_event(db: Session, stripe_sub: dict) -> None:
    user = find_user_for_subscription(db, stripe_sub)
    if not user:
        logger.warning("[Webhook] No account for Stripe subscription %s", stripe_sub.get("id"))
        return
    sync_subscription(db, user, stripe_sub)
