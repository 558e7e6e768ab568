#!/usr/bin/env python3
"""
Eventara auth -- maintenance commands.

Usage:
  python main.py mark-inactive              # list candidates, confirm, then mark
  python main.py mark-inactive --dry-run    # list candidates only
  python main.py mark-inactive --force      # no confirmation prompt (cron)
  python main.py mark-inactive --stats      # counts and threshold date

An account is marked inactive when it has not logged in (or, if it never
logged in, was created) more than INACTIVITY_THRESHOLD_MONTHS months ago.
Inactive users can reactivate themselves through the reactivation flow.

Environment variables:
  DATABASE_URL                  SQLAlchemy URL of the account database.
  INACTIVITY_THRESHOLD_MONTHS   Default 3.
"""

import argparse
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from auth.inactivation import InactivationSweep
from auth.lifecycle import last_activity
from auth.models import Account
from auth.store import AccountStore
from core.config import get_settings

logger = logging.getLogger("eventara.cli")


def _days_idle(account: Account, now: datetime) -> str:
    seen = last_activity(account)
    return str((now - seen).days) if seen else "-"


def _print_candidates(accounts: list[Account]) -> None:
    now = datetime.now(timezone.utc)
    print(f"  {'ID':>6}  {'Email':<40}  {'Last login':<19}  {'Created':<19}  Days idle")
    print("  " + "-" * 100)
    for a in accounts:
        last = a.last_login.strftime("%Y-%m-%d %H:%M:%S") if a.last_login else "Never"
        created = a.created_at.strftime("%Y-%m-%d %H:%M:%S") if a.created_at else "-"
        print(f"  {a.id:>6}  {a.email:<40}  {last:<19}  {created:<19}  {_days_idle(a, now)}")


def _show_stats(sweep: InactivationSweep) -> int:
    stats = sweep.stats()
    print("\nAccount Inactivity Statistics")
    print("=" * 30)
    print(f"  Total users:               {stats['total_users']}")
    print(f"  Active users:              {stats['active_users']}")
    print(f"  Inactive users:            {stats['inactive_users']}")
    print(f"  Suspended users:           {stats['suspended_users']}")
    print(f"  Users that should be inactive: {stats['users_should_be_inactive']}")
    print(f"\n  Inactivity threshold: {stats['threshold_months']} months")
    print(f"  Threshold date:       {stats['threshold_date']}\n")
    return 0


def mark_inactive(
    sweep: InactivationSweep,
    dry_run: bool = False,
    force: bool = False,
    confirm=input,
) -> int:
    """Run the sweep interactively. Returns the process exit code."""
    print(f"Checking for accounts idle longer than {sweep.threshold_months} months...")
    candidates = sweep.candidates()
    if not candidates:
        print("  No accounts need to be marked inactive.")
        return 0

    print(f"Found {len(candidates)} account(s) that should be marked inactive:\n")
    _print_candidates(candidates)
    print()

    if dry_run:
        print("  DRY RUN: no accounts were marked inactive.")
        return 0

    if not force:
        answer = confirm("Mark these accounts as inactive? [y/N] ").strip().lower()
        if answer not in ("y", "yes"):
            print("  Operation cancelled.")
            return 0

    report = sweep.run()
    print(f"\n  Marked {report.marked_inactive} account(s) as inactive.")
    if report.errors:
        print(f"  [!] Failed to mark {len(report.errors)} account(s):")
        for err in report.errors:
            print(f"      - {err['email']} (ID: {err['account_id']}): {err['error']}")
        return 1
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="eventara-auth",
        description="Account maintenance commands for the Eventara auth service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py mark-inactive --dry-run
  python main.py mark-inactive --force
  python main.py mark-inactive --stats
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    mark = sub.add_parser("mark-inactive", help="Mark long-idle accounts as inactive")
    mark.add_argument(
        "--dry-run",
        action="store_true",
        help="Show which accounts would be marked inactive without updating them",
    )
    mark.add_argument(
        "--force",
        action="store_true",
        help="Skip the confirmation prompt",
    )
    mark.add_argument(
        "--stats",
        action="store_true",
        help="Show inactivity statistics and exit",
    )

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    settings = get_settings()
    store = AccountStore(db_url=settings.database_url)
    try:
        sweep = InactivationSweep(store, threshold_months=settings.inactivity_threshold_months)
        if args.stats:
            return _show_stats(sweep)
        return mark_inactive(sweep, dry_run=args.dry_run, force=args.force)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
