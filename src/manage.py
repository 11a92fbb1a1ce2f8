"""Pulse Notifications maintenance CLI.

Runs the periodic sweeps and the account-erasure hook against the
configured storage providers.

Usage:
    python src/manage.py setup-db          # Create tables (relational providers only)
    python src/manage.py drop-db           # Drop tables
    python src/manage.py cleanup-notifications --days 30 [--read-only]
    python src/manage.py cleanup-identities --days 30
    python src/manage.py erase-user USER_ID
"""

import argparse
import sys


def _domain():
    from notifications.domain import notifications

    notifications.init()
    return notifications


def setup_databases():
    """Create the schema on relational storage providers."""
    from notifications.utils.db import setup_db

    touched = setup_db(_domain())
    print(f"Schema ready on: {', '.join(touched) or 'no relational providers'}")
    return touched


def drop_databases():
    """Drop the schema on relational storage providers."""
    from notifications.utils.db import drop_db

    touched = drop_db(_domain())
    print(f"Schema dropped on: {', '.join(touched) or 'no relational providers'}")
    return touched


def cleanup_notifications(days=None, read_only=False):
    """Delete notifications older than ``days``."""
    from notifications.notification.store import (
        cleanup_delivery_receipts_older_than,
        cleanup_notifications_older_than,
    )

    with _domain().domain_context():
        deleted = cleanup_notifications_older_than(days, read_only=read_only)
        receipts = cleanup_delivery_receipts_older_than(days)
    print(f"Deleted {deleted} notification(s).")
    print(f"Deleted {receipts} delivery receipt(s).")
    return deleted


def cleanup_identities(days=None):
    """Delete cached identities not synced for ``days``."""
    from notifications.identity_cache.cache import cleanup_identities_older_than

    with _domain().domain_context():
        deleted = cleanup_identities_older_than(days)
    print(f"Deleted {deleted} cached identit{'y' if deleted == 1 else 'ies'}.")
    return deleted


def erase_user(user_id):
    """Erase every record stored for ``user_id``."""
    from notifications.maintenance import erase_user_data

    with _domain().domain_context():
        summary = erase_user_data(user_id)
    print(
        f"Erased user {user_id}: {summary['notifications_deleted']} notification(s), "
        f"preferences {'removed' if summary['preferences_deleted'] else 'absent'}, "
        f"identity {'removed' if summary['identity_deleted'] else 'absent'}."
    )
    return summary


def main(argv=None):
    parser = argparse.ArgumentParser(description="Pulse Notifications maintenance")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create database tables")
    subparsers.add_parser("drop-db", help="Drop database tables")

    notifications_parser = subparsers.add_parser("cleanup-notifications", help="Delete old notifications")
    notifications_parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Age threshold in days (default: configured notification_max_age_days)",
    )
    notifications_parser.add_argument(
        "--read-only",
        action="store_true",
        help="Only delete notifications that have been read",
    )

    identities_parser = subparsers.add_parser("cleanup-identities", help="Delete stale cached identities")
    identities_parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Age threshold in days since last sync (default: configured identity_cache_max_age_days)",
    )

    erase_parser = subparsers.add_parser("erase-user", help="Erase all data stored for a user")
    erase_parser.add_argument("user_id", help="Id of the deleted account")

    args = parser.parse_args(argv)

    if args.command == "setup-db":
        setup_databases()
    elif args.command == "drop-db":
        drop_databases()
    elif args.command == "cleanup-notifications":
        cleanup_notifications(args.days, read_only=args.read_only)
    elif args.command == "cleanup-identities":
        cleanup_identities(args.days)
    elif args.command == "erase-user":
        erase_user(args.user_id)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
