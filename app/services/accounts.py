import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.core.retention_policy import trial_window
from app.models.enums import AccountStatus
from app.models.user import User
from app.utils.timestamps import utcnow

logger = logging.getLogger(__name__)


def create_account(
    db: Session,
    email: str,
    supabase_id: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> User:
    """Create an account at sign-up with a fresh trial window."""
    now = now or utcnow()
    trial_started_at, trial_ends_at = trial_window(now)
    user = User(
        email=email.lower().strip(),
        supabase_id=supabase_id,
        first_name=first_name,
        last_name=last_name,
        trial_started_at=trial_started_at,
        trial_ends_at=trial_ends_at,
        subscription_status=AccountStatus.TRIAL,
        created_at=now,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("[Accounts] Created user %s (%s), trial ends at %s", user.id, user.email, trial_ends_at)
    return user
