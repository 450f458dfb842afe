"""
Data retention: accounts whose trial lapsed without a subscription are
scheduled for deletion, warned three times (30 / 14 / 3 days before) and then
permanently purged. Subscribing at any point before the purge cancels it.

run_data_deletion_process() is meant to run once a day, never concurrently
with itself (see app.services.job_lock). Every account is processed in its own
transaction; a failure on one account is recorded in the run summary and the
batch moves on.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import MalformedAccountError
from app.core.retention_policy import (
    DELETION_NOTICE_DAYS,
    INACTIVITY_THRESHOLD_DAYS,
    days_until,
)
from app.models.deletion_schedule import UserDeletionSchedule
from app.models.enums import AccountStatus, WarningStage
from app.models.user import User
from app.services.account_deletion import purge_account
from app.services.entitlement import build_account_snapshot, evaluate_entitlement
from app.services.retention_email import send_deletion_warning_email
from app.utils.timestamps import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

SendWarningFn = Callable[[str, Optional[str], WarningStage, datetime], bool]


@dataclass
class AccountError:
    account_id: int
    step: str
    error: str

    def as_dict(self) -> dict:
        return {"account_id": self.account_id, "step": self.step, "error": self.error}


@dataclass
class DeletionRunSummary:
    scheduled: int = 0
    warnings_sent: Dict[WarningStage, int] = field(default_factory=lambda: {stage: 0 for stage in WarningStage})
    deleted: int = 0
    cancelled: int = 0
    errors: List[AccountError] = field(default_factory=list)

    def record_error(self, account_id: int, step: str, error) -> None:
        self.errors.append(AccountError(account_id=account_id, step=step, error=str(error)))

    @property
    def total_warnings(self) -> int:
        return sum(self.warnings_sent.values())

    def as_dict(self) -> dict:
        return {
            "scheduled": self.scheduled,
            "warningsSent": {stage.value: count for stage, count in self.warnings_sent.items()},
            "deleted": self.deleted,
            "cancelled": self.cancelled,
            "errors": [e.as_dict() for e in self.errors],
        }


@dataclass
class DeletionStatus:
    is_scheduled: bool
    scheduled_deletion_at: Optional[datetime] = None
    days_until_deletion: int = 0
    warnings_sent: Dict[WarningStage, bool] = field(default_factory=lambda: {stage: False for stage in WarningStage})

    @property
    def can_cancel(self) -> bool:
        return self.is_scheduled and self.days_until_deletion > 0


def due_warning_stage(entry: UserDeletionSchedule, days_until_deletion: int) -> Optional[WarningStage]:
    """
    The most urgent stage whose threshold has been crossed, or None.
    If that stage was already handled nothing is due: a less urgent stage is
    never sent after a more urgent one.
    """
    for stage in WarningStage.by_urgency():
        if days_until_deletion <= stage.threshold_days:
            if entry.warning_sent_at(stage) is not None:
                return None
            return stage
    return None


def cancel_scheduled_deletion(db: Session, user_id: int) -> bool:
    """Remove the account's deletion schedule. No-op (False) when none exists."""
    removed = db.query(UserDeletionSchedule).filter(
        UserDeletionSchedule.user_id == user_id
    ).delete(synchronize_session=False)
    db.commit()
    if removed:
        logger.info("[DataRetention] Cancelled scheduled deletion for user %s", user_id)
    return bool(removed)


def get_deletion_status(db: Session, user_id: int, now: Optional[datetime] = None) -> DeletionStatus:
    now = as_naive_utc(now) if now is not None else utcnow()
    entry = db.query(UserDeletionSchedule).filter(UserDeletionSchedule.user_id == user_id).first()
    if entry is None:
        return DeletionStatus(is_scheduled=False)
    return DeletionStatus(
        is_scheduled=True,
        scheduled_deletion_at=entry.scheduled_deletion_at,
        days_until_deletion=max(0, days_until(entry.scheduled_deletion_at, now)),
        warnings_sent={stage: entry.warning_sent_at(stage) is not None for stage in WarningStage},
    )


class DataRetentionScheduler:
    def __init__(
        self,
        db: Session,
        send_email: Optional[SendWarningFn] = None,
        now: Optional[datetime] = None,
        dry_run: bool = False,
        heartbeat: Optional[Callable[[], None]] = None,
    ):
        self.db = db
        self.send_email = send_email or send_deletion_warning_email
        # One instant for the whole run so every step agrees on "now"
        self.now = as_naive_utc(now) if now is not None else utcnow()
        self.dry_run = dry_run
        # Called between accounts; a long run uses it to keep its job lock
        self._heartbeat = heartbeat or (lambda: None)

    # ------------------------------------------------------------------ scan

    def scan_and_schedule(self, summary: Optional[DeletionRunSummary] = None) -> DeletionRunSummary:
        """Create a deletion schedule for every account unpaid for the inactivity threshold."""
        summary = summary or DeletionRunSummary()
        cutoff = self.now - timedelta(days=INACTIVITY_THRESHOLD_DAYS)
        # No trial_ends_at means no trial was granted: expiry counts from the trial start
        expired_at = func.coalesce(User.trial_ends_at, User.trial_started_at)

        candidates = (
            self.db.query(User.id)
            .outerjoin(UserDeletionSchedule, UserDeletionSchedule.user_id == User.id)
            .filter(
                UserDeletionSchedule.id.is_(None),
                User.subscription_status != AccountStatus.ACTIVE,
                expired_at <= cutoff,
            )
            .order_by(User.id)
            .all()
        )
        logger.info("[DataRetention] %d account(s) past the inactivity threshold", len(candidates))

        for (user_id,) in candidates:
            self._heartbeat()
            try:
                if self._schedule_account(user_id):
                    summary.scheduled += 1
            except Exception as e:
                self.db.rollback()
                logger.exception("[DataRetention] Failed to schedule deletion for user %s", user_id)
                summary.record_error(user_id, "schedule", e)
        return summary

    def _schedule_account(self, user_id: int) -> bool:
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            return False

        snapshot = build_account_snapshot(self.db, user, fail_closed=False)
        if snapshot.is_malformed:
            raise MalformedAccountError(user_id, "trial_ends_at is before trial_started_at")

        decision = evaluate_entitlement(snapshot, self.now)
        if decision.has_access:
            return False

        scheduled_for = self.now + timedelta(days=DELETION_NOTICE_DAYS)
        if self.dry_run:
            logger.info("[DataRetention] [DRY RUN] Would schedule user %s for %s", user_id, scheduled_for)
            return True

        self.db.add(UserDeletionSchedule(
            user_id=user_id,
            scheduled_deletion_at=scheduled_for,
            created_at=self.now,
        ))
        user.subscription_status = AccountStatus.EXPIRED
        try:
            self.db.commit()
        except IntegrityError:
            # Unique user_id: someone else scheduled it first
            self.db.rollback()
            logger.info("[DataRetention] User %s already scheduled", user_id)
            return False

        logger.info("[DataRetention] Scheduled user %s for deletion at %s", user_id, scheduled_for)
        return True

    # -------------------------------------------------------------- warnings

    def send_due_warnings(self, summary: Optional[DeletionRunSummary] = None) -> DeletionRunSummary:
        """Send at most one warning per schedule entry: the most urgent one outstanding."""
        summary = summary or DeletionRunSummary()
        open_entries = (
            self.db.query(UserDeletionSchedule.id, UserDeletionSchedule.user_id)
            .filter(
                UserDeletionSchedule.scheduled_deletion_at > self.now,
                UserDeletionSchedule.final_warning_sent_at.is_(None),
            )
            .order_by(UserDeletionSchedule.scheduled_deletion_at)
            .all()
        )

        for entry_id, user_id in open_entries:
            self._heartbeat()
            try:
                stage = self._warn_entry(entry_id, summary)
                if stage is not None:
                    summary.warnings_sent[stage] += 1
            except Exception as e:
                self.db.rollback()
                logger.exception("[DataRetention] Failed to process warning for user %s", user_id)
                summary.record_error(user_id, "warning", e)
        return summary

    def _warn_entry(self, entry_id: int, summary: DeletionRunSummary) -> Optional[WarningStage]:
        entry = self.db.query(UserDeletionSchedule).filter(UserDeletionSchedule.id == entry_id).first()
        if entry is None:
            return None

        stage = due_warning_stage(entry, days_until(entry.scheduled_deletion_at, self.now))
        if stage is None:
            return None

        if self.dry_run:
            logger.info("[DataRetention] [DRY RUN] Would send %s warning to user %s", stage.value, entry.user_id)
            return stage

        user = entry.user
        delivered = self.send_email(user.email, user.first_name, stage, entry.scheduled_deletion_at)
        if not delivered:
            # Leave the stamp empty so the next run retries this same stage
            logger.warning("[DataRetention] %s warning not delivered to user %s", stage.value, entry.user_id)
            summary.record_error(entry.user_id, "warning", f"{stage.value} warning not delivered")
            return None

        # Less urgent stages that were skipped are closed with the same stamp
        for earlier in WarningStage.by_urgency(most_urgent_first=False):
            if earlier.urgency <= stage.urgency and entry.warning_sent_at(earlier) is None:
                entry.mark_warning(earlier, self.now)
        self.db.commit()
        return stage

    # ------------------------------------------------------------- deletions

    def execute_due_deletions(self, summary: Optional[DeletionRunSummary] = None) -> DeletionRunSummary:
        """Permanently delete every account whose scheduled deletion time has passed."""
        summary = summary or DeletionRunSummary()
        due = (
            self.db.query(UserDeletionSchedule.id, UserDeletionSchedule.user_id)
            .filter(UserDeletionSchedule.scheduled_deletion_at <= self.now)
            .order_by(UserDeletionSchedule.scheduled_deletion_at)
            .all()
        )
        logger.info("[DataRetention] %d deletion(s) due", len(due))

        for entry_id, user_id in due:
            self._heartbeat()
            try:
                outcome = self._execute_entry(entry_id)
                if outcome == "deleted":
                    summary.deleted += 1
                elif outcome == "cancelled":
                    summary.cancelled += 1
            except Exception as e:
                self.db.rollback()
                logger.exception("[DataRetention] Failed to delete user %s", user_id)
                summary.record_error(user_id, "deletion", e)
        return summary

    def _execute_entry(self, entry_id: int) -> str:
        # Re-read under a row lock: a cancellation that committed first wins
        entry = (
            self.db.query(UserDeletionSchedule)
            .filter(UserDeletionSchedule.id == entry_id)
            .with_for_update()
            .first()
        )
        if entry is None or entry.scheduled_deletion_at > self.now:
            self.db.rollback()
            return "skipped"

        user_id = entry.user_id
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            if self.dry_run:
                self.db.rollback()
                logger.info("[DataRetention] [DRY RUN] Would remove orphaned schedule for user %s", user_id)
                return "skipped"
            self.db.delete(entry)
            self.db.commit()
            return "skipped"

        decision = evaluate_entitlement(build_account_snapshot(self.db, user, fail_closed=False), self.now)
        if decision.has_access:
            # Subscribed but the cancellation never arrived
            logger.info("[DataRetention] User %s is entitled again, cancelling deletion", user_id)
            if self.dry_run:
                self.db.rollback()
                return "cancelled"
            self.db.delete(entry)
            self.db.commit()
            return "cancelled"

        if self.dry_run:
            self.db.rollback()
            logger.info("[DataRetention] [DRY RUN] Would delete user %s", user_id)
            return "deleted"

        counts = purge_account(self.db, user_id)
        self.db.commit()
        logger.info("[DataRetention] Permanently deleted user %s: %s", user_id, counts)
        return "deleted"

    # ---------------------------------------------------------------- cancel

    def cancel_deletion(self, user_id: int) -> bool:
        if self.dry_run:
            return False
        return cancel_scheduled_deletion(self.db, user_id)

    # ----------------------------------------------------------- orchestrate

    def run_data_deletion_process(self) -> DeletionRunSummary:
        """Scan, warn, then delete. Never raises for per-account failures."""
        logger.info("[DataRetention] Starting data deletion process at %s%s", self.now, " (dry run)" if self.dry_run else "")
        summary = DeletionRunSummary()
        self.scan_and_schedule(summary)
        self.send_due_warnings(summary)
        self.execute_due_deletions(summary)
        logger.info(
            "[DataRetention] Completed: scheduled=%d warnings=%d deleted=%d cancelled=%d errors=%d",
            summary.scheduled,
            summary.total_warnings,
            summary.deleted,
            summary.cancelled,
            len(summary.errors),
        )
        return summary


def run_data_deletion_process(
    db: Session,
    send_email: Optional[SendWarningFn] = None,
    now: Optional[datetime] = None,
    dry_run: bool = False,
    heartbeat: Optional[Callable[[], None]] = None,
) -> DeletionRunSummary:
    return DataRetentionScheduler(
        db, send_email=send_email, now=now, dry_run=dry_run, heartbeat=heartbeat
    ).run_data_deletion_process()
