import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session
from app.core.exceptions import AccountNotFoundError
from app.db.session import get_db
from app.dependencies.auth import get_current_user
from app.models.memory import Memory
from app.models.subscription import Subscription
from app.models.task import Task
from app.models.user import User
from app.schemas.auth import UserResponse, UserUpdate
from app.services.account_deletion import delete_account_now
from app.utils.timestamps import utcnow

router = APIRouter()
logger = logging.getLogger(__name__)

THEME_CHOICES = ("light", "dark", "system")


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "theme_preference": user.theme_preference,
        "subscription_status": user.subscription_status.value,
        "trial_started_at": user.trial_started_at,
        "trial_ends_at": user.trial_ends_at,
        "created_at": user.created_at,
    }


@router.get("/me", response_model=UserResponse)
def get_me(user: User = Depends(get_current_user)):
    """Get current user profile"""
    return _user_payload(user)


@router.put("/me", response_model=UserResponse)
def update_me(
    user_data: UserUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Update user profile information"""
    if user_data.theme_preference is not None and user_data.theme_preference not in THEME_CHOICES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"theme_preference must be one of: {', '.join(THEME_CHOICES)}"
        )

    if user_data.first_name is not None:
        user.first_name = user_data.first_name.strip() or None
    if user_data.last_name is not None:
        user.last_name = user_data.last_name.strip() or None
    if user_data.theme_preference is not None:
        user.theme_preference = user_data.theme_preference

    db.commit()
    db.refresh(user)
    return _user_payload(user)


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
def delete_me(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Permanently delete the account and all of its data right away."""
    user_id = user.id
    try:
        delete_account_now(db, user_id)
    except AccountNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    logger.info("[Users] User %s deleted their account", user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me/export")
def export_my_data(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Everything we store about the account, as JSON."""
    memories = db.query(Memory).filter(Memory.user_id == user.id).order_by(Memory.created_at).all()
    tasks = db.query(Task).filter(Task.user_id == user.id).order_by(Task.created_at).all()
    subscription = db.query(Subscription).filter(Subscription.user_id == user.id).first()

    emotions = {}
    for m in memories:
        if m.emotion:
            emotions[m.emotion] = emotions.get(m.emotion, 0) + 1
    completed = sum(1 for t in tasks if t.completed)

    return {
        "exported_at": utcnow().isoformat(),
        "profile": {
            **_user_payload(user),
            "trial_started_at": user.trial_started_at.isoformat() if user.trial_started_at else None,
            "trial_ends_at": user.trial_ends_at.isoformat() if user.trial_ends_at else None,
            "created_at": user.created_at.isoformat() if user.created_at else None,
        },
        "subscription": {
            "status": subscription.status.value,
            "price_id": subscription.price_id,
            "current_period_end": subscription.current_period_end.isoformat() if subscription.current_period_end else None,
            "cancel_at_period_end": subscription.cancel_at_period_end,
        } if subscription else None,
        "memories": [
            {
                "id": m.id,
                "title": m.title,
                "content": m.content,
                "tags": m.tags or [],
                "emotion": m.emotion,
                "metadata": m.memory_metadata,
                "created_at": m.created_at.isoformat() if m.created_at else None,
            }
            for m in memories
        ],
        "tasks": [
            {
                "id": t.id,
                "title": t.title,
                "description": t.description,
                "priority": t.priority.value,
                "due_date": t.due_date.isoformat() if t.due_date else None,
                "completed": t.completed,
                "created_at": t.created_at.isoformat() if t.created_at else None,
            }
            for t in tasks
        ],
        "statistics": {
            "total_memories": len(memories),
            "total_tasks": len(tasks),
            "completed_tasks": completed,
            "task_completion_rate": round(completed / len(tasks) * 100, 1) if tasks else 0.0,
            "emotions": emotions,
        },
    }
