"""
Audit database model for the append-only compliance trail
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, JSON, Uuid

from app.db.base import Base


class AuditLog(Base):
    """
    One immutable audit entry.

    user_id is not a foreign key; entries outlive the users
    they describe, and user_email keeps them readable after a user is removed.
    """

    __tablename__ = "audit_logs"

    log_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Actor
    user_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    user_email = Column(String(255), nullable=True)

    # Provenance
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)

    # What happened
    action = Column(String(100), nullable=False, index=True)  # e.g. "CREATE", "LOGIN", "ADMIN_ROLE_CHANGED"
    resource = Column(String(100), nullable=False, index=True)  # e.g. "users", "authentication"
    resource_id = Column(String(100), nullable=True)

    # Snapshots
    old_values = Column(JSON(none_as_null=True), nullable=True)
    new_values = Column(JSON(none_as_null=True), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.resource} at {self.created_at}>"
