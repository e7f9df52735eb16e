"""
Database models package
"""
from app.db.models.user import User, UserRole, UserStatus
from app.db.models.audit import AuditLog

__all__ = [
    # User
    "User",
    "UserRole",
    "UserStatus",
    # Audit
    "AuditLog",
]
