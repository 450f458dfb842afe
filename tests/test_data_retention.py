from datetime import timedelta, timezone
from unittest.mock import patch

import pytest

from app.core.exceptions import JobAlreadyRunningError

from app.models import (
    AccountStatus,
    Memory,
    ProviderSubscriptionStatus,
    Subscription,
    Task,
    User,
    UserDeletionSchedule,
    WarningStage,
)
from app.services.data_retention import (
    DataRetentionScheduler,
    cancel_scheduled_deletion,
    get_deletion_status,
    run_data_deletion_process,
)

from conftest import NOW


class RecordingMailer:
    """Stands in for the warning email sender; records every call."""

    def __init__(self, deliver=True):
        self.deliver = deliver
        self.sent = []

    def __call__(self, to_email, first_name, stage, deletion_date):
        self.sent.append((to_email, stage))
        return self.deliver

    @property
    def stages(self):
        return [stage for _, stage in self.sent]


def scheduler(db, now, mailer=None, dry_run=False):
    return DataRetentionScheduler(db, send_email=mailer or RecordingMailer(), now=now, dry_run=dry_run)


def entry_for(db, user_id):
    db.expire_all()
    return db.query(UserDeletionSchedule).filter(UserDeletionSchedule.user_id == user_id).first()


def add_content(db, user):
    db.add_all([
        Memory(user_id=user.id, title="Beach day", content="Sunny", tags=["summer"]),
        Memory(user_id=user.id, title="Graduation", content="Finally"),
        Task(user_id=user.id, title="Call mom"),
    ])
    db.commit()


class TestScanAndSchedule:
    """Accounts unpaid for the inactivity threshold get exactly one schedule entry."""

    def test_schedules_account_past_threshold(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        summary = scheduler(db, NOW).scan_and_schedule()

        assert summary.scheduled == 1
        entry = entry_for(db, user.id)
        assert entry.scheduled_deletion_at == NOW + timedelta(days=30)
        assert entry.first_warning_sent_at is None
        db.refresh(user)
        assert user.subscription_status == AccountStatus.EXPIRED

    def test_ignores_recently_expired_account(self, db, make_account):
        user = make_account(trial_ended_days_ago=89)
        assert scheduler(db, NOW).scan_and_schedule().scheduled == 0
        assert entry_for(db, user.id) is None

    def test_ignores_active_subscribers(self, db, make_account):
        flagged = make_account(trial_ended_days_ago=200, status=AccountStatus.ACTIVE)
        mirrored = make_account(trial_ended_days_ago=200, subscription_status=ProviderSubscriptionStatus.ACTIVE)
        summary = scheduler(db, NOW).scan_and_schedule()
        assert summary.scheduled == 0
        assert entry_for(db, flagged.id) is None
        assert entry_for(db, mirrored.id) is None

    def test_canceled_subscription_is_eligible(self, db, make_account):
        make_account(
            trial_ended_days_ago=120,
            status=AccountStatus.CANCELED,
            subscription_status=ProviderSubscriptionStatus.CANCELED,
        )
        assert scheduler(db, NOW).scan_and_schedule().scheduled == 1

    def test_null_trial_end_counts_from_trial_start(self, db, make_account):
        old = make_account(trial_ends_at=None, trial_started_at=NOW - timedelta(days=95))
        recent = make_account(trial_ends_at=None, trial_started_at=NOW - timedelta(days=10))
        scheduler(db, NOW).scan_and_schedule()
        assert entry_for(db, old.id) is not None
        assert entry_for(db, recent.id) is None

    def test_is_idempotent(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        scheduler(db, NOW).scan_and_schedule()
        first_schedule = entry_for(db, user.id).scheduled_deletion_at

        summary = scheduler(db, NOW + timedelta(days=1)).scan_and_schedule()
        assert summary.scheduled == 0
        assert db.query(UserDeletionSchedule).count() == 1
        assert entry_for(db, user.id).scheduled_deletion_at == first_schedule

    def test_malformed_account_is_reported_not_scheduled(self, db, make_account):
        bad = make_account(trial_ends_at=NOW - timedelta(days=100), trial_started_at=NOW - timedelta(days=50))
        good = make_account(trial_ended_days_ago=100)

        summary = scheduler(db, NOW).scan_and_schedule()
        assert summary.scheduled == 1
        assert [e.account_id for e in summary.errors] == [bad.id]
        assert summary.errors[0].step == "schedule"
        assert entry_for(db, bad.id) is None
        assert entry_for(db, good.id) is not None

    def test_dry_run_writes_nothing(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        summary = scheduler(db, NOW, dry_run=True).scan_and_schedule()
        assert summary.scheduled == 1
        assert entry_for(db, user.id) is None


class TestSendDueWarnings:

    def schedule(self, db, make_account, **kwargs):
        user = make_account(trial_ended_days_ago=91, **kwargs)
        scheduler(db, NOW).scan_and_schedule()
        return user

    def test_first_warning_on_scheduling_day(self, db, make_account):
        user = self.schedule(db, make_account)
        mailer = RecordingMailer()
        summary = scheduler(db, NOW, mailer).send_due_warnings()

        assert mailer.sent == [(user.email, WarningStage.FIRST)]
        assert summary.warnings_sent[WarningStage.FIRST] == 1
        assert entry_for(db, user.id).first_warning_sent_at == NOW

    def test_one_warning_per_stage(self, db, make_account):
        self.schedule(db, make_account)
        mailer = RecordingMailer()
        for day in (0, 1, 5, 16, 17, 20, 27, 28, 29):
            scheduler(db, NOW + timedelta(days=day), mailer).send_due_warnings()
        assert mailer.stages == [WarningStage.FIRST, WarningStage.SECOND, WarningStage.FINAL]

    def test_missed_stages_send_only_most_urgent(self, db, make_account):
        user = self.schedule(db, make_account)
        mailer = RecordingMailer()
        later = NOW + timedelta(days=27)
        scheduler(db, later, mailer).send_due_warnings()

        assert mailer.stages == [WarningStage.FINAL]
        entry = entry_for(db, user.id)
        # Skipped stages are closed so they can never be sent after the final one
        assert entry.first_warning_sent_at == later
        assert entry.second_warning_sent_at == later
        assert entry.final_warning_sent_at == later

        scheduler(db, later + timedelta(days=1), mailer).send_due_warnings()
        assert mailer.stages == [WarningStage.FINAL]

    def test_stamps_respect_urgency_order(self, db, make_account):
        user = self.schedule(db, make_account)
        for day in (0, 16, 27):
            scheduler(db, NOW + timedelta(days=day)).send_due_warnings()
        entry = entry_for(db, user.id)
        assert entry.first_warning_sent_at <= entry.second_warning_sent_at <= entry.final_warning_sent_at
        assert entry.final_warning_sent_at <= entry.scheduled_deletion_at

    def test_failed_send_is_retried_next_run(self, db, make_account):
        user = self.schedule(db, make_account)
        failing = RecordingMailer(deliver=False)
        summary = scheduler(db, NOW, failing).send_due_warnings()

        assert summary.total_warnings == 0
        assert summary.errors[0].account_id == user.id
        assert entry_for(db, user.id).first_warning_sent_at is None

        working = RecordingMailer()
        scheduler(db, NOW + timedelta(hours=1), working).send_due_warnings()
        assert working.stages == [WarningStage.FIRST]

    def test_mailer_exception_is_isolated(self, db, make_account):
        first = self.schedule(db, make_account)
        second = make_account(trial_ended_days_ago=91)
        scheduler(db, NOW).scan_and_schedule()

        def mailer(to_email, first_name, stage, deletion_date):
            if to_email == first.email:
                raise RuntimeError("smtp exploded")
            return True

        summary = scheduler(db, NOW, mailer).send_due_warnings()
        assert summary.warnings_sent[WarningStage.FIRST] == 1
        assert [e.account_id for e in summary.errors] == [first.id]
        assert entry_for(db, second.id).first_warning_sent_at == NOW

    def test_due_entries_are_not_warned(self, db, make_account):
        self.schedule(db, make_account)
        mailer = RecordingMailer()
        scheduler(db, NOW + timedelta(days=31), mailer).send_due_warnings()
        assert mailer.sent == []


class TestExecuteDueDeletions:

    def test_deletes_account_and_content_atomically(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        add_content(db, user)
        scheduler(db, NOW).scan_and_schedule()
        user_id = user.id

        summary = scheduler(db, NOW + timedelta(days=30)).execute_due_deletions()

        assert summary.deleted == 1
        db.expire_all()
        assert db.query(User).filter(User.id == user_id).first() is None
        assert db.query(Memory).filter(Memory.user_id == user_id).count() == 0
        assert db.query(Task).filter(Task.user_id == user_id).count() == 0
        assert db.query(UserDeletionSchedule).filter(UserDeletionSchedule.user_id == user_id).count() == 0

    def test_failed_purge_leaves_everything(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        add_content(db, user)
        scheduler(db, NOW).scan_and_schedule()
        user_id = user.id

        with patch("app.services.data_retention.purge_account", side_effect=RuntimeError("disk full")):
            summary = scheduler(db, NOW + timedelta(days=30)).execute_due_deletions()

        assert summary.deleted == 0
        assert summary.errors[0].step == "deletion"
        db.expire_all()
        assert db.query(User).filter(User.id == user_id).count() == 1
        assert db.query(Memory).filter(Memory.user_id == user_id).count() == 2
        assert entry_for(db, user_id) is not None

    def test_not_yet_due_is_untouched(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        scheduler(db, NOW).scan_and_schedule()
        summary = scheduler(db, NOW + timedelta(days=29)).execute_due_deletions()
        assert summary.deleted == 0
        assert entry_for(db, user.id) is not None

    def test_resubscribed_account_is_cancelled_not_deleted(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        scheduler(db, NOW).scan_and_schedule()
        db.add(Subscription(user_id=user.id, status=ProviderSubscriptionStatus.ACTIVE))
        db.commit()

        summary = scheduler(db, NOW + timedelta(days=30)).execute_due_deletions()
        assert summary.deleted == 0
        assert summary.cancelled == 1
        assert db.query(User).filter(User.id == user.id).count() == 1
        assert entry_for(db, user.id) is None

    def test_cancellation_before_read_wins(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        add_content(db, user)
        scheduler(db, NOW).scan_and_schedule()
        run = scheduler(db, NOW + timedelta(days=30))
        execute_entry = run._execute_entry

        def cancel_then_execute(entry_id):
            # Cancellation commits between the due-list query and the per-entry read
            cancel_scheduled_deletion(db, user.id)
            return execute_entry(entry_id)

        with patch.object(run, "_execute_entry", side_effect=cancel_then_execute):
            summary = run.execute_due_deletions()

        assert summary.deleted == 0
        assert db.query(User).filter(User.id == user.id).count() == 1
        assert db.query(Memory).filter(Memory.user_id == user.id).count() == 2

    def test_dry_run_deletes_nothing(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        scheduler(db, NOW).scan_and_schedule()
        # Entry whose account row is already gone
        db.add(UserDeletionSchedule(user_id=999999, scheduled_deletion_at=NOW, created_at=NOW))
        db.commit()

        summary = scheduler(db, NOW + timedelta(days=30), dry_run=True).execute_due_deletions()
        assert summary.deleted == 1
        assert db.query(User).filter(User.id == user.id).count() == 1
        assert entry_for(db, 999999) is not None

    def test_orphaned_entry_is_removed(self, db):
        db.add(UserDeletionSchedule(user_id=999999, scheduled_deletion_at=NOW, created_at=NOW))
        db.commit()
        summary = scheduler(db, NOW + timedelta(days=1)).execute_due_deletions()
        assert summary.deleted == 0
        assert summary.errors == []
        assert entry_for(db, 999999) is None


class TestEndToEnd:

    def test_scenario_warn_at_three_days(self, db, make_account):
        # Trial expired at T0; scanned at T0+91d
        t0 = NOW - timedelta(days=91)
        user = make_account(trial_ends_at=t0)
        scheduler(db, NOW).scan_and_schedule()
        entry = entry_for(db, user.id)
        assert entry.scheduled_deletion_at == t0 + timedelta(days=91 + 30)

        mailer = RecordingMailer()
        scheduler(db, NOW + timedelta(days=27), mailer).send_due_warnings()
        assert mailer.stages == [WarningStage.FINAL]
        assert entry_for(db, user.id).final_warning_sent_at == NOW + timedelta(days=27)

    def test_scenario_subscribe_before_deletion(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        scheduler(db, NOW).scan_and_schedule()

        assert scheduler(db, NOW + timedelta(days=10)).cancel_deletion(user.id) is True
        summary = scheduler(db, NOW + timedelta(days=30)).execute_due_deletions()
        assert summary.deleted == 0
        assert db.query(User).filter(User.id == user.id).count() == 1

    def test_full_run_summary(self, db, make_account):
        fresh = make_account(trial_ended_days_ago=91)
        due = make_account(trial_ended_days_ago=200)
        add_content(db, due)
        db.add(UserDeletionSchedule(
            user_id=due.id,
            scheduled_deletion_at=NOW - timedelta(hours=1),
            first_warning_sent_at=NOW - timedelta(days=30),
            second_warning_sent_at=NOW - timedelta(days=14),
            final_warning_sent_at=NOW - timedelta(days=3),
            created_at=NOW - timedelta(days=30),
        ))
        db.commit()
        due_id = due.id

        mailer = RecordingMailer()
        summary = run_data_deletion_process(db, send_email=mailer, now=NOW)

        assert summary.scheduled == 1
        assert summary.warnings_sent[WarningStage.FIRST] == 1
        assert summary.deleted == 1
        assert summary.errors == []
        assert mailer.sent == [(fresh.email, WarningStage.FIRST)]
        assert summary.as_dict() == {
            "scheduled": 1,
            "warningsSent": {"first": 1, "second": 0, "final": 0},
            "deleted": 1,
            "cancelled": 0,
            "errors": [],
        }
        assert db.query(User).filter(User.id == due_id).count() == 0

    def test_second_run_is_a_no_op(self, db, make_account):
        make_account(trial_ended_days_ago=91)
        run_data_deletion_process(db, send_email=RecordingMailer(), now=NOW)
        mailer = RecordingMailer()
        summary = run_data_deletion_process(db, send_email=mailer, now=NOW + timedelta(hours=2))
        assert summary.scheduled == 0
        assert summary.total_warnings == 0
        assert mailer.sent == []

    def test_aware_now_is_normalised(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        mailer = RecordingMailer()
        summary = run_data_deletion_process(db, send_email=mailer, now=NOW.replace(tzinfo=timezone.utc))

        assert summary.scheduled == 1
        assert summary.errors == []
        assert mailer.stages == [WarningStage.FIRST]
        assert entry_for(db, user.id).first_warning_sent_at == NOW

    def test_heartbeat_runs_before_each_account(self, db, make_account):
        make_account(trial_ended_days_ago=91)
        make_account(trial_ended_days_ago=95)
        beats = []
        run_data_deletion_process(db, send_email=RecordingMailer(), now=NOW, heartbeat=lambda: beats.append(1))
        # Two scheduled, then two warned
        assert len(beats) == 4

    def test_lost_lock_stops_the_run(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)

        def heartbeat():
            raise JobAlreadyRunningError("data_deletion_process")

        with pytest.raises(JobAlreadyRunningError):
            run_data_deletion_process(db, send_email=RecordingMailer(), now=NOW, heartbeat=heartbeat)
        assert entry_for(db, user.id) is None


class TestDeletionStatus:

    def test_not_scheduled(self, db, make_account):
        user = make_account()
        status = get_deletion_status(db, user.id, now=NOW)
        assert status.is_scheduled is False
        assert status.can_cancel is False

    def test_scheduled(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        scheduler(db, NOW).scan_and_schedule()
        scheduler(db, NOW).send_due_warnings()

        status = get_deletion_status(db, user.id, now=NOW + timedelta(days=2))
        assert status.is_scheduled is True
        assert status.days_until_deletion == 28
        assert status.warnings_sent[WarningStage.FIRST] is True
        assert status.warnings_sent[WarningStage.FINAL] is False
        assert status.can_cancel is True

    def test_cancel_without_schedule_is_a_no_op(self, db, make_account):
        user = make_account()
        assert cancel_scheduled_deletion(db, user.id) is False

    def test_aware_now(self, db, make_account):
        user = make_account(trial_ended_days_ago=91)
        scheduler(db, NOW).scan_and_schedule()
        aware = (NOW + timedelta(days=2)).replace(tzinfo=timezone.utc)
        assert get_deletion_status(db, user.id, now=aware).days_until_deletion == 28
