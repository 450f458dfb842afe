import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import UserSyncRequest
from app.dependencies.auth import verify_supabase_token
from app.services.accounts import create_account

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/check-email/{email}")
def check_email(email: str, db: Session = Depends(get_db)):
    """
    Check if an email already exists in the database (case-insensitive).
    Lets the sign-up screen send existing users to log in instead.
    """
    normalized_email = email.lower().strip()
    existing_user = db.query(User).filter(
        User.email.ilike(normalized_email)
    ).first()

    if existing_user:
        return {
            "exists": True,
            "message": "This email is already registered. Please log in instead."
        }
    return {
        "exists": False,
        "message": "Email is available."
    }


@router.post("/sync-user")
def sync_user(
    user_data: UserSyncRequest,
    db: Session = Depends(get_db),
    payload: dict = Depends(verify_supabase_token)
):
    """
    Sync user from Supabase Auth to our database.
    The first sync creates the account and starts its free trial;
    later syncs are idempotent and only fill in missing names.
    """
    token_user_id = payload.get("sub")
    token_email = (payload.get("email") or "").lower()
    if token_user_id != user_data.id or token_email != user_data.email.lower():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token user does not match sync request"
        )

    existing_user = db.query(User).filter(User.supabase_id == user_data.id).first()
    if not existing_user:
        existing_user = db.query(User).filter(User.email.ilike(user_data.email)).first()

    if existing_user:
        if existing_user.supabase_id and existing_user.supabase_id != user_data.id:
            # Same email, different Supabase identity: they must log in to the original account
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="This email is already registered. Please log in instead."
            )
        existing_user.supabase_id = user_data.id
        # Never overwrite names the user may have customized
        if user_data.first_name and user_data.first_name.strip() and not existing_user.first_name:
            existing_user.first_name = user_data.first_name.strip()
        if user_data.last_name and user_data.last_name.strip() and not existing_user.last_name:
            existing_user.last_name = user_data.last_name.strip()
        db.commit()
        return {
            "message": "User synced successfully",
            "user_id": existing_user.id,
            "created": False,
        }

    try:
        new_user = create_account(
            db,
            email=user_data.email,
            supabase_id=user_data.id,
            first_name=user_data.first_name,
            last_name=user_data.last_name,
        )
    except IntegrityError:
        db.rollback()
        # A concurrent sync created it first
        new_user = db.query(User).filter(User.supabase_id == user_data.id).first()
        if not new_user:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="This email is already registered. Please log in instead."
            )
        return {
            "message": "User synced successfully",
            "user_id": new_user.id,
            "created": False,
        }

    return {
        "message": "User created successfully",
        "user_id": new_user.id,
        "created": True,
        "trial_ends_at": new_user.trial_ends_at.isoformat(),
    }
