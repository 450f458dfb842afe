"""
Database-backed exclusive lock for batch jobs that must never overlap
(the daily data deletion run). Works across processes and hosts.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, Optional

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import JobAlreadyRunningError
from app.models.job_lock import JobLock
from app.utils.timestamps import utcnow

logger = logging.getLogger(__name__)


def acquire_job_lock(db: Session, name: str, ttl_seconds: int, now: Optional[datetime] = None) -> Optional[str]:
    """Return an owner token if the lock was taken, None if another run holds it."""
    now = now or utcnow()

    # Abandoned locks (crashed run) expire after the TTL
    db.query(JobLock).filter(JobLock.name == name, JobLock.expires_at <= now).delete(synchronize_session=False)
    db.commit()

    token = uuid.uuid4().hex
    try:
        db.execute(
            insert(JobLock).values(
                name=name,
                owner=token,
                locked_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("[JobLock] '%s' is held by another run", name)
        return None
    return token


def renew_job_lock(db: Session, name: str, token: str, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
    """Push the holder's expiry out by another TTL. False when the lock is no longer ours."""
    now = now or utcnow()
    renewed = db.query(JobLock).filter(JobLock.name == name, JobLock.owner == token).update(
        {JobLock.expires_at: now + timedelta(seconds=ttl_seconds)},
        synchronize_session=False,
    )
    db.commit()
    return bool(renewed)


def release_job_lock(db: Session, name: str, token: str) -> bool:
    deleted = db.query(JobLock).filter(JobLock.name == name, JobLock.owner == token).delete(synchronize_session=False)
    db.commit()
    return bool(deleted)


class JobLease:
    """A held lock. Call renew() between units of work so a long run keeps it."""

    def __init__(self, db: Session, name: str, token: str, ttl_seconds: int):
        self.db = db
        self.name = name
        self.token = token
        self.ttl_seconds = ttl_seconds

    def renew(self) -> None:
        if not renew_job_lock(self.db, self.name, self.token, self.ttl_seconds):
            # Expired and taken over by another run; stop before overlapping it
            logger.error("[JobLock] Lost '%s' to another run", self.name)
            raise JobAlreadyRunningError(self.name)


@contextmanager
def job_lock(db: Session, name: str, ttl_seconds: int) -> Iterator[JobLease]:
    token = acquire_job_lock(db, name, ttl_seconds)
    if token is None:
        raise JobAlreadyRunningError(name)
    try:
        yield JobLease(db, name, token, ttl_seconds)
    finally:
        try:
            release_job_lock(db, name, token)
        except Exception:
            db.rollback()
            logger.exception("[JobLock] Failed to release '%s'; it will expire after its TTL", name)
