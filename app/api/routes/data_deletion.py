"""
Data retention routes.

/run is the batch trigger for an external cron (Render cron job, GitHub
Actions, etc.); it is protected by CRON_SECRET rather than a user token.
/status and /cancel are the account-facing view of a pending deletion.
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import JobAlreadyRunningError
from app.core.retention_policy import DELETION_JOB_LOCK_NAME, DELETION_JOB_LOCK_TTL_SECONDS
from app.db.session import get_db
from app.dependencies.auth import get_current_user
from app.models.enums import WarningStage
from app.models.user import User
from app.schemas.data_deletion import CancelDeletionResponse, DeletionRunResponse, DeletionStatusResponse
from app.services.data_retention import cancel_scheduled_deletion, get_deletion_status, run_data_deletion_process
from app.services.job_lock import job_lock
from app.services.retention_email import send_admin_summary

router = APIRouter()
logger = logging.getLogger(__name__)


def verify_cron_secret(
    authorization: Optional[str] = Header(None),
    x_cron_secret: Optional[str] = Header(None),
) -> None:
    if not settings.CRON_SECRET:
        logger.error("[DataRetention] CRON_SECRET is not set; refusing to run")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Data deletion trigger is not configured"
        )

    provided = x_cron_secret
    if not provided and authorization and authorization.startswith("Bearer "):
        provided = authorization[len("Bearer "):].strip()

    if not provided or not hmac.compare_digest(provided, settings.CRON_SECRET):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )


@router.api_route("/run", methods=["GET", "POST"], response_model=DeletionRunResponse, response_model_by_alias=True)
def run_deletion(
    db: Session = Depends(get_db),
    _: None = Depends(verify_cron_secret)
):
    """
    Scan, warn and delete in one pass. Meant to be called once a day.
    Per-account failures are listed in the summary; the run itself succeeds.
    """
    try:
        with job_lock(db, DELETION_JOB_LOCK_NAME, DELETION_JOB_LOCK_TTL_SECONDS) as lease:
            summary = run_data_deletion_process(db, heartbeat=lease.renew).as_dict()
    except JobAlreadyRunningError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A data deletion run is already in progress"
        )

    send_admin_summary(summary)
    return summary


@router.get("/status", response_model=DeletionStatusResponse)
def deletion_status(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    deletion = get_deletion_status(db, user.id)
    return {
        "is_scheduled_for_deletion": deletion.is_scheduled,
        "scheduled_deletion_date": deletion.scheduled_deletion_at,
        "days_until_deletion": deletion.days_until_deletion,
        "warnings_sent": {stage.value: deletion.warnings_sent[stage] for stage in WarningStage},
        "can_cancel_deletion": deletion.can_cancel,
    }


@router.post("/cancel", response_model=CancelDeletionResponse)
def cancel_deletion(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Cancel this account's pending deletion. No-op when nothing is scheduled."""
    return {"cancelled": cancel_scheduled_deletion(db, user.id)}
