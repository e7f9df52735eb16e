"""
Audit service for the clinic backend.
Owns audit semantics: validated best-effort writes, filtered queries,
statistics, exports and retention.
"""

import csv
import json
import io
import math
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Literal, Mapping, Optional, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.logging import get_logger
from app.db.audit_store import AuditCriteria, AuditStore
from app.db.models import AuditLog, User
from app.services.audit_schemas import (
    ActionStat,
    AuditExport,
    AuditLogEntry,
    AuditLogPage,
    AuditLogRecord,
    AuditQueryFilters,
    AuditStatistics,
    AuditUserSummary,
    Pagination,
    ResourceStat,
    UserStat,
    as_naive_utc,
    to_iso_utc,
)

logger = get_logger(__name__)


CSV_HEADERS = [
    "Timestamp",
    "User Email",
    "Action",
    "Resource",
    "Resource ID",
    "IP Address",
    "User Agent",
    "Old Values",
    "New Values",
]

MAX_RECENT_HOURS = 168  # one week
MAX_RECENT_LIMIT = 500
TOP_ACTORS_LIMIT = 10


def _json_field(value: Any) -> str:
    if value is None:
        return ""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class AuditService:
    """Service for creating and querying audit logs."""

    def __init__(self, store: AuditStore, export_limit: Optional[int] = None):
        self.store = store
        self.export_limit = export_limit or settings.AUDIT_EXPORT_LIMIT

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def create_audit_log(self, entry: Union[AuditLogEntry, Mapping[str, Any]]) -> None:
        """
        Validate and persist an audit entry.

        Never raises: a lost audit entry is preferable to failing the
        operation that produced it. Failures are logged and discarded.
        """
        try:
            if isinstance(entry, AuditLogEntry):
                validated = entry
            else:
                validated = AuditLogEntry.model_validate(dict(entry))

            self.store.create({
                "user_id": validated.user_id,
                "user_email": str(validated.user_email) if validated.user_email else None,
                "ip_address": str(validated.ip_address) if validated.ip_address else None,
                "user_agent": validated.user_agent or None,
                "action": validated.action,
                "resource": validated.resource,
                "resource_id": validated.resource_id or None,
                "old_values": validated.old_values,
                "new_values": validated.new_values,
            })

            logger.info(
                f"Audit log created: {validated.action} {validated.resource} "
                f"| user={validated.user_id} | resource_id={validated.resource_id}"
            )
        except Exception as e:
            logger.error(f"Failed to create audit log: {e} | entry={dict(entry) if isinstance(entry, Mapping) else entry!r}")

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def get_audit_logs(self, filters: Optional[AuditQueryFilters] = None) -> AuditLogPage:
        """Get a newest-first page of audit logs matching the filters."""
        filters = filters or AuditQueryFilters()
        page = max(filters.page, 1)
        limit = max(filters.limit, 1)
        criteria = self._criteria(filters)

        total = self.store.count(criteria)
        rows = self.store.find(criteria, skip=(page - 1) * limit, limit=limit)

        users = self._resolve_users({row.user_id for row in rows if row.user_id is not None})

        return AuditLogPage(
            logs=[self._to_record(row, users.get(row.user_id)) for row in rows],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit),
            ),
        )

    def get_user_audit_history(self, user_id: UUID, page: int = 1, limit: int = 50) -> AuditLogPage:
        """Get audit logs for a specific user."""
        return self.get_audit_logs(AuditQueryFilters(user_id=user_id, page=page, limit=limit))

    def get_resource_audit_history(
        self,
        resource: str,
        resource_id: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> AuditLogPage:
        """Get audit logs for a resource, optionally narrowed to one instance."""
        return self.get_audit_logs(
            AuditQueryFilters(resource=resource, resource_id=resource_id, page=page, limit=limit)
        )

    def get_recent_activity(self, hours: int = 24, limit: int = 100) -> AuditLogPage:
        """Get activity from the last `hours` hours, bounded to avoid unbounded scans."""
        hours = min(max(hours, 1), MAX_RECENT_HOURS)
        limit = min(max(limit, 1), MAX_RECENT_LIMIT)
        start_date = datetime.utcnow() - timedelta(hours=hours)
        return self.get_audit_logs(AuditQueryFilters(start_date=start_date, limit=limit))

    def get_audit_statistics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> AuditStatistics:
        """
        Aggregate the trail over an optional date window.

        Returns the total count, per-action and per-resource breakdowns and
        the ten most active users. Users whose record no longer exists are
        still reported, with user=None.
        """
        criteria = AuditCriteria(start_date=as_naive_utc(start_date), end_date=as_naive_utc(end_date))

        total_logs = self.store.count(criteria)
        action_rows = self.store.group_count("action", criteria)
        resource_rows = self.store.group_count("resource", criteria)
        user_rows = self.store.group_count(
            "user_id", criteria, exclude_null=True, limit=TOP_ACTORS_LIMIT
        )

        users = self._resolve_users({user_id for user_id, _ in user_rows})

        return AuditStatistics(
            total_logs=total_logs,
            action_stats=[ActionStat(action=action, count=count) for action, count in action_rows],
            resource_stats=[
                ResourceStat(resource=resource, count=count) for resource, count in resource_rows
            ],
            user_stats=[
                UserStat(user_id=user_id, count=count, user=users.get(user_id))
                for user_id, count in user_rows
            ],
        )

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_to_csv(self, filters: Optional[AuditQueryFilters] = None) -> str:
        """
        Render matching logs as CSV.

        The header row is plain; every data field is wrapped in double quotes
        with embedded quotes doubled. Rows are separated by "\\n" with no
        trailing newline.
        """
        result = self._export_page(filters)

        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        for log in result.logs:
            writer.writerow([
                to_iso_utc(log.created_at),
                log.user_email or "",
                log.action,
                log.resource,
                log.resource_id or "",
                log.ip_address or "",
                log.user_agent or "",
                _json_field(log.old_values),
                _json_field(log.new_values),
            ])

        rows = buffer.getvalue()
        if rows.endswith("\n"):
            rows = rows[:-1]

        header = ",".join(CSV_HEADERS)
        return f"{header}\n{rows}" if rows else header

    def export_to_json(self, filters: Optional[AuditQueryFilters] = None) -> AuditExport:
        """Return the export page together with the export timestamp."""
        return AuditExport(data=self._export_page(filters), exported_at=datetime.utcnow())

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def delete_old_logs(self, older_than_days: int) -> int:
        """Delete logs older than the given number of days (data retention compliance)."""
        if older_than_days < 0:
            raise ValueError("older_than_days must not be negative")

        cutoff = datetime.utcnow() - timedelta(days=older_than_days)
        deleted = self.store.delete_before(cutoff)

        logger.info(
            f"Old audit logs deleted: {deleted} | cutoff={cutoff.isoformat()} | older_than_days={older_than_days}"
        )
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _export_page(self, filters: Optional[AuditQueryFilters]) -> AuditLogPage:
        filters = filters or AuditQueryFilters()
        return self.get_audit_logs(replace(filters, page=1, limit=self.export_limit))

    @staticmethod
    def _criteria(filters: AuditQueryFilters) -> AuditCriteria:
        return AuditCriteria(
            user_id=filters.user_id,
            action=filters.action,
            resource=filters.resource,
            resource_id=filters.resource_id,
            ip_address=filters.ip_address,
            start_date=as_naive_utc(filters.start_date),
            end_date=as_naive_utc(filters.end_date),
        )

    def _resolve_users(self, user_ids: set[UUID]) -> dict[UUID, AuditUserSummary]:
        """Best-effort lookup of display data for actors."""
        if not user_ids:
            return {}
        try:
            users = self.store.find_users(sorted(user_ids, key=str))
        except SQLAlchemyError as e:
            logger.warning(f"Could not resolve audit actors: {e}")
            return {}
        return {user.user_id: self._to_user_summary(user) for user in users}

    @staticmethod
    def _to_user_summary(user: User) -> AuditUserSummary:
        return AuditUserSummary(
            id=user.user_id,
            email=user.email,
            name=user.full_name,
            role=user.role.value if hasattr(user.role, "value") else str(user.role),
        )

    @staticmethod
    def _to_record(row: AuditLog, user: Optional[AuditUserSummary]) -> AuditLogRecord:
        return AuditLogRecord(
            id=row.log_id,
            user_id=row.user_id,
            user_email=row.user_email,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            action=row.action,
            resource=row.resource,
            resource_id=row.resource_id,
            old_values=row.old_values,
            new_values=row.new_values,
            created_at=row.created_at,
            user=user,
        )


AuthAction = Literal["LOGIN", "LOGOUT", "LOGIN_FAILED"]
AccessAction = Literal["READ", "EXPORT"]
ModificationAction = Literal["CREATE", "UPDATE", "DELETE"]
LGPDAction = Literal[
    "DATA_REQUEST", "DATA_EXPORT", "DATA_DELETION", "CONSENT_GIVEN", "CONSENT_WITHDRAWN"
]


class AuditEventLogger:
    """
    Structured emitter for domain code.

    Routes and services record security and compliance events through these
    helpers instead of building raw audit entries.
    """

    def __init__(self, service: AuditService):
        self.service = service

    def log_auth(
        self,
        action: AuthAction,
        user_email: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """Log a login, logout or failed login."""
        self.service.create_audit_log({
            "user_id": user_id,
            "user_email": user_email,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "action": action,
            "resource": "authentication",
            "new_values": details,
        })

    def log_data_access(
        self,
        action: AccessAction,
        resource: str,
        resource_id: Optional[str],
        user_id: Optional[str],
        user_email: Optional[str],
        ip_address: Optional[str] = None,
    ) -> None:
        """Log a read or export of sensitive data."""
        self.service.create_audit_log({
            "user_id": user_id,
            "user_email": user_email,
            "ip_address": ip_address,
            "action": f"DATA_{action}",
            "resource": resource,
            "resource_id": resource_id,
        })

    def log_data_modification(
        self,
        action: ModificationAction,
        resource: str,
        resource_id: Optional[str],
        user_id: Optional[str],
        user_email: Optional[str],
        old_values: Any = None,
        new_values: Any = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """Log a create, update or delete with before/after snapshots."""
        self.service.create_audit_log({
            "user_id": user_id,
            "user_email": user_email,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "action": action,
            "resource": resource,
            "resource_id": resource_id,
            "old_values": old_values,
            "new_values": new_values,
        })

    def log_admin_action(
        self,
        action: str,
        resource: str,
        user_id: Optional[str],
        user_email: Optional[str],
        details: Any = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> None:
        """Log an administrative action."""
        self.service.create_audit_log({
            "user_id": user_id,
            "user_email": user_email,
            "ip_address": ip_address,
            "user_agent": user_agent,
            "action": f"ADMIN_{action}",
            "resource": resource,
            "resource_id": resource_id,
            "new_values": details,
        })

    def log_lgpd_event(
        self,
        action: LGPDAction,
        user_id: Optional[str],
        user_email: Optional[str],
        details: Any = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """Log a data-subject-rights event (LGPD)."""
        self.service.create_audit_log({
            "user_id": user_id,
            "user_email": user_email,
            "ip_address": ip_address,
            "action": f"LGPD_{action}",
            "resource": "data_subject_rights",
            "new_values": details,
        })
