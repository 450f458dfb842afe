import math
import os
from datetime import datetime, timedelta
from typing import Dict, Tuple

# Trial granted at sign-up
TRIAL_LENGTH_DAYS = int(os.getenv("TRIAL_LENGTH_DAYS", "3"))

# Data retention: accounts whose trial expired this long ago without a
# subscription get a deletion schedule (3 months)
INACTIVITY_THRESHOLD_DAYS = int(os.getenv("INACTIVITY_THRESHOLD_DAYS", "90"))

# Notice period between scheduling and permanent deletion
DELETION_NOTICE_DAYS = int(os.getenv("DELETION_NOTICE_DAYS", "30"))

# Warning stages fire when days-until-deletion drops to these values
WARNING_THRESHOLDS_DAYS: Dict[str, int] = {
    "first": 30,
    "second": 14,
    "final": 3,
}

# Client entitlement refresh cadence
ENTITLEMENT_POLL_INTERVAL_SECONDS = int(os.getenv("ENTITLEMENT_POLL_INTERVAL_SECONDS", "60"))

# Single active deletion run; a lock older than the TTL is considered abandoned.
# The run renews it before each account, so the TTL bounds one account, not the run.
DELETION_JOB_LOCK_NAME = "data_deletion_process"
DELETION_JOB_LOCK_TTL_SECONDS = int(os.getenv("DELETION_JOB_LOCK_TTL_SECONDS", "3600"))

ONE_DAY = timedelta(days=1)


def trial_window(start: datetime) -> Tuple[datetime, datetime]:
    """Trial start/end for an account created at `start`."""
    return start, start + timedelta(days=TRIAL_LENGTH_DAYS)


def days_until(target: datetime, now: datetime) -> int:
    """Whole days from `now` to `target`, rounded up. Zero or negative once `target` has passed."""
    return math.ceil((target - now) / ONE_DAY)
