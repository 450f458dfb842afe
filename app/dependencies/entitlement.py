import logging

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.dependencies.auth import get_current_user
from app.models.user import User
from app.services.entitlement import get_entitlement

logger = logging.getLogger(__name__)

PAYWALL_PATH = "/subscription"


def paywall_exception(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        detail={"message": message, "redirect": PAYWALL_PATH},
    )


def require_access(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    """
    Gate a feature behind trial / subscription. Any blocked or failed check
    sends the client to the paywall; it never falls through to the feature.
    """
    try:
        decision = get_entitlement(db, user)
    except Exception:
        logger.exception("[Entitlement] Check failed for user %s, routing to paywall", user.id)
        raise paywall_exception("Unable to verify your subscription. Please try again.")

    if decision.access_blocked:
        raise paywall_exception("Your free trial has ended. Subscribe to keep using MemorySphere.")
    return user
