"""
Services package
"""
from app.services.audit import AuditEventLogger, AuditService

__all__ = [
    "AuditService",
    "AuditEventLogger",
]
