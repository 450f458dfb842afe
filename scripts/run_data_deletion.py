#!/usr/bin/env python3
"""
Run the data retention process once from the command line.

Scans for accounts past the inactivity threshold, sends due deletion warnings
and permanently deletes accounts whose deletion date has passed. Takes the
same lock as the daily job, so it never overlaps a scheduled run.

Run from project root with DATABASE_URL set:
  python scripts/run_data_deletion.py
  python scripts/run_data_deletion.py --dry-run
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv(project_root / ".env")
load_dotenv(project_root / ".env.local")

from app.core.exceptions import JobAlreadyRunningError
from app.core.retention_policy import DELETION_JOB_LOCK_NAME, DELETION_JOB_LOCK_TTL_SECONDS
from app.db.session import SessionLocal
from app.services.data_retention import run_data_deletion_process
from app.services.job_lock import job_lock
from app.services.retention_email import send_admin_summary


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the data retention process once.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be scheduled, warned and deleted without writing anything",
    )
    args = parser.parse_args()

    if not os.getenv("DATABASE_URL"):
        print("ERROR: DATABASE_URL not set. Add it to .env or export it.")
        sys.exit(1)

    sess = SessionLocal()
    try:
        with job_lock(sess, DELETION_JOB_LOCK_NAME, DELETION_JOB_LOCK_TTL_SECONDS) as lease:
            summary = run_data_deletion_process(sess, dry_run=args.dry_run, heartbeat=lease.renew).as_dict()
    except JobAlreadyRunningError:
        print("Another data deletion run is in progress. Try again later.")
        sys.exit(2)
    finally:
        sess.close()

    if args.dry_run:
        print("[DRY RUN] Nothing was written.")
    else:
        send_admin_summary(summary)
    print(json.dumps(summary, indent=2))
    if summary["errors"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
