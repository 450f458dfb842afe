"""
Permanent account deletion. One transaction owns the whole cascade:
memories, tasks, subscription mirror, deletion schedule, then the user row.
"""
import logging

from sqlalchemy.orm import Session

from app.core.exceptions import AccountNotFoundError
from app.models.deletion_schedule import UserDeletionSchedule
from app.models.memory import Memory
from app.models.subscription import Subscription
from app.models.task import Task
from app.models.user import User

logger = logging.getLogger(__name__)


def purge_account(db: Session, user_id: int) -> dict:
    """
    Delete the account and everything it owns inside the caller's transaction.
    Does not commit. Order respects FK constraints. Returns per-table row counts.
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise AccountNotFoundError(user_id)

    counts = {
        "memories": db.query(Memory).filter(Memory.user_id == user_id).delete(synchronize_session=False),
        "tasks": db.query(Task).filter(Task.user_id == user_id).delete(synchronize_session=False),
        "subscriptions": db.query(Subscription).filter(
            Subscription.user_id == user_id
        ).delete(synchronize_session=False),
        "deletion_schedule": db.query(UserDeletionSchedule).filter(
            UserDeletionSchedule.user_id == user_id
        ).delete(synchronize_session=False),
    }

    db.delete(user)
    db.flush()
    counts["users"] = 1
    return counts


def delete_account_now(db: Session, user_id: int) -> dict:
    """User-requested deletion: purge and commit, or roll back everything."""
    try:
        counts = purge_account(db, user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("[AccountDeletion] Deleted account %s: %s", user_id, counts)
    return counts
