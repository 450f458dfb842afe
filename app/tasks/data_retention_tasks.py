import logging

from app.celery_app import celery_app
from app.core.exceptions import JobAlreadyRunningError
from app.core.retention_policy import DELETION_JOB_LOCK_NAME, DELETION_JOB_LOCK_TTL_SECONDS
from app.db.session import SessionLocal
from app.services.data_retention import run_data_deletion_process
from app.services.job_lock import job_lock
from app.services.retention_email import send_admin_summary

logger = logging.getLogger(__name__)


@celery_app.task(name="run_data_deletion_process")
def run_data_deletion(dry_run: bool = False):
    """Daily retention run (03:00 UTC). Skips when another run holds the lock."""
    db = SessionLocal()
    try:
        with job_lock(db, DELETION_JOB_LOCK_NAME, DELETION_JOB_LOCK_TTL_SECONDS) as lease:
            summary = run_data_deletion_process(db, dry_run=dry_run, heartbeat=lease.renew).as_dict()
    except JobAlreadyRunningError:
        logger.info("[DataRetention] Run skipped: another run is in progress")
        return {"status": "locked"}
    finally:
        db.close()

    if not dry_run:
        send_admin_summary(summary)
    return {"status": "success", "summary": summary}
