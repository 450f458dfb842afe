"""
Subscription / paywall routes: entitlement status, plans and Stripe Checkout.
"""
import logging

import stripe
from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.products import STRIPE_PRODUCTS, get_product_by_price_id
from app.core.retention_policy import ENTITLEMENT_POLL_INTERVAL_SECONDS
from app.db.session import get_db
from app.dependencies.auth import get_current_user
from app.models.enums import ProviderSubscriptionStatus
from app.models.subscription import Subscription
from app.models.user import User
from app.schemas.entitlement import CheckoutSessionRequest, EntitlementResponse, VerifyCheckoutRequest
from app.services.entitlement import account_state, build_account_snapshot, evaluate_entitlement, record_expiry
from app.services.subscription_sync import sync_subscription

router = APIRouter()
logger = logging.getLogger(__name__)


def _as_dict(stripe_object) -> dict:
    return stripe_object.to_dict() if hasattr(stripe_object, "to_dict") else dict(stripe_object)


@router.get("/status", response_model=EntitlementResponse)
def get_subscription_status(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """
    Current entitlement decision. Clients call this on load and every
    poll_interval_seconds; a blocked decision means show the paywall.
    """
    snapshot = build_account_snapshot(db, user)
    decision = evaluate_entitlement(snapshot)
    record_expiry(db, user, snapshot, decision)
    return {
        **decision.as_dict(),
        "state": account_state(decision, snapshot).value,
        "poll_interval_seconds": ENTITLEMENT_POLL_INTERVAL_SECONDS,
    }


@router.get("/products")
def list_products():
    return {"products": STRIPE_PRODUCTS}


@router.post("/create-checkout-session")
def create_checkout_session(
    request: CheckoutSessionRequest = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """
    Create a Stripe Checkout Session for the chosen plan.
    Returns the checkout URL to redirect the user to.
    """
    product = get_product_by_price_id(request.price_id)
    if not product:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unknown subscription plan"
        )

    subscription = db.query(Subscription).filter(Subscription.user_id == user.id).first()
    if subscription and subscription.status == ProviderSubscriptionStatus.ACTIVE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already has an active subscription"
        )

    stripe.api_key = settings.STRIPE_SECRET_KEY
    try:
        stripe_customer_id = subscription.stripe_customer_id if subscription else None
        if not stripe_customer_id:
            customer = stripe.Customer.create(
                email=user.email,
                metadata={"user_id": str(user.id)}
            )
            stripe_customer_id = customer.id

        checkout_session = stripe.checkout.Session.create(
            customer=stripe_customer_id,
            payment_method_types=["card"],
            line_items=[{"price": product["price_id"], "quantity": 1}],
            mode=product["mode"],
            success_url=f"{settings.FRONTEND_URL}/subscription-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.FRONTEND_URL}/subscription?canceled=true",
            metadata={"user_id": str(user.id)},
            subscription_data={"metadata": {"user_id": str(user.id)}},
        )
    except stripe.StripeError as e:
        logger.error("[Stripe] Error creating checkout session for user %s: %s", user.id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create checkout session: {str(e)}"
        )

    logger.info("[Stripe] Created checkout session %s for user %s", checkout_session.id, user.id)
    return {
        "checkout_url": checkout_session.url,
        "session_id": checkout_session.id
    }


@router.post("/verify-checkout-session")
def verify_checkout_session(
    request: VerifyCheckoutRequest = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """
    Sync subscription state right after checkout redirects back, without
    waiting for the webhook. The webhook remains the source of truth.
    """
    stripe.api_key = settings.STRIPE_SECRET_KEY
    try:
        checkout_session = stripe.checkout.Session.retrieve(request.session_id)

        try:
            session_user_id = int((checkout_session.metadata or {}).get("user_id"))
        except (TypeError, ValueError):
            session_user_id = None
        if session_user_id != user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="This checkout session does not belong to you"
            )

        if checkout_session.payment_status != "paid":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Checkout session is not paid"
            )

        subscription_ref = checkout_session.subscription
        if not subscription_ref:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No subscription found in checkout session"
            )
        subscription_id = subscription_ref if isinstance(subscription_ref, str) else subscription_ref.id
        stripe_sub = _as_dict(stripe.Subscription.retrieve(subscription_id))
    except stripe.StripeError as e:
        logger.error("[Stripe] Error verifying checkout session %s: %s", request.session_id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to verify checkout session: {str(e)}"
        )

    subscription = sync_subscription(db, user, stripe_sub)
    return {
        "message": "Subscription verified and updated",
        "status": subscription.status.value,
        "price_id": subscription.price_id,
    }
