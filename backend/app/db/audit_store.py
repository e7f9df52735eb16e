"""
SQLAlchemy store adapter for audit entries.

Thin persistence primitives keyed by the audit_logs schema. No audit
semantics live here; every call opens and closes its own session so the
store can be used from request handlers and background writes alike.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence
from uuid import UUID

from sqlalchemy import func, select, delete
from sqlalchemy.orm import sessionmaker

from app.db.models import AuditLog, User


@dataclass(frozen=True)
class AuditCriteria:
    """Conjunctive filter over audit_logs. None means "no constraint"."""

    user_id: Optional[UUID] = None
    action: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class AuditStore(Protocol):
    """Persistence interface for audit entries."""

    def create(self, values: dict[str, Any]) -> AuditLog:
        """Insert one audit row."""

    def count(self, criteria: AuditCriteria) -> int:
        """Count rows matching the criteria."""

    def find(self, criteria: AuditCriteria, skip: int, limit: int) -> list[AuditLog]:
        """Fetch a newest-first page of rows."""

    def group_count(
        self,
        column: str,
        criteria: AuditCriteria,
        exclude_null: bool = False,
        limit: Optional[int] = None,
    ) -> list[tuple[Any, int]]:
        """Count rows per distinct value of a column, highest count first."""

    def delete_before(self, cutoff: datetime) -> int:
        """Delete rows created strictly before the cutoff."""

    def find_users(self, user_ids: Sequence[UUID]) -> list[User]:
        """Fetch user records for display purposes."""


GROUPABLE_COLUMNS = {
    "action": AuditLog.action,
    "resource": AuditLog.resource,
    "user_id": AuditLog.user_id,
}


@dataclass
class SqlAlchemyAuditStore(AuditStore):
    """Relational audit store backed by a SQLAlchemy session factory."""

    session_factory: sessionmaker

    def create(self, values: dict[str, Any]) -> AuditLog:
        with self.session_factory() as db:
            audit_log = AuditLog(**values)
            db.add(audit_log)
            db.commit()
            db.refresh(audit_log)
            return audit_log

    def count(self, criteria: AuditCriteria) -> int:
        with self.session_factory() as db:
            stmt = select(func.count(AuditLog.log_id)).where(*self._conditions(criteria))
            return db.execute(stmt).scalar_one()

    def find(self, criteria: AuditCriteria, skip: int, limit: int) -> list[AuditLog]:
        with self.session_factory() as db:
            stmt = (
                select(AuditLog)
                .where(*self._conditions(criteria))
                .order_by(AuditLog.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            return list(db.execute(stmt).scalars().all())

    def group_count(
        self,
        column: str,
        criteria: AuditCriteria,
        exclude_null: bool = False,
        limit: Optional[int] = None,
    ) -> list[tuple[Any, int]]:
        target = GROUPABLE_COLUMNS[column]
        conditions = self._conditions(criteria)
        if exclude_null:
            conditions.append(target.is_not(None))

        count = func.count(AuditLog.log_id).label("count")
        stmt = (
            select(target, count)
            .where(*conditions)
            .group_by(target)
            .order_by(count.desc(), target)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        with self.session_factory() as db:
            return [(value, total) for value, total in db.execute(stmt).all()]

    def delete_before(self, cutoff: datetime) -> int:
        with self.session_factory() as db:
            result = db.execute(delete(AuditLog).where(AuditLog.created_at < cutoff))
            db.commit()
            return result.rowcount or 0

    def find_users(self, user_ids: Sequence[UUID]) -> list[User]:
        if not user_ids:
            return []
        with self.session_factory() as db:
            stmt = select(User).where(User.user_id.in_(list(user_ids)))
            return list(db.execute(stmt).scalars().all())

    @staticmethod
    def _conditions(criteria: AuditCriteria) -> list:
        conditions = []
        if criteria.user_id is not None:
            conditions.append(AuditLog.user_id == criteria.user_id)
        if criteria.action:
            conditions.append(AuditLog.action == criteria.action)
        if criteria.resource:
            conditions.append(AuditLog.resource == criteria.resource)
        if criteria.resource_id:
            conditions.append(AuditLog.resource_id == criteria.resource_id)
        if criteria.ip_address:
            conditions.append(AuditLog.ip_address == criteria.ip_address)
        if criteria.start_date is not None:
            conditions.append(AuditLog.created_at >= criteria.start_date)
        if criteria.end_date is not None:
            conditions.append(AuditLog.created_at <= criteria.end_date)
        return conditions
