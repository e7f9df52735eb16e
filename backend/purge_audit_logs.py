"""
Delete audit entries older than the retention window.

Usage:
    python purge_audit_logs.py            # uses AUDIT_RETENTION_DAYS
    python purge_audit_logs.py --days 90
"""
import argparse
import sys

from app.core import logger, settings
from app.db.audit_store import SqlAlchemyAuditStore
from app.db.session import SessionLocal
from app.services.audit import AuditService


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Purge old audit log entries")
    parser.add_argument(
        "--days",
        type=int,
        default=settings.AUDIT_RETENTION_DAYS,
        help=f"Keep entries newer than this many days (default: {settings.AUDIT_RETENTION_DAYS})",
    )
    args = parser.parse_args(argv)

    if args.days < 0:
        parser.error("--days must not be negative")

    service = AuditService(SqlAlchemyAuditStore(SessionLocal))
    deleted = service.delete_old_logs(args.days)

    print(f"Deleted {deleted} audit log entries older than {args.days} days")
    logger.info(f"Audit retention run finished: {deleted} entries removed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
