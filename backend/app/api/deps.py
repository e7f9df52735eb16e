"""
API dependencies
"""
from fastapi import Request

from app.db import get_db
from app.core import get_current_actor, require_role
from app.core.middleware import audit_resource, get_audit_annotation
from app.services.audit import AuditEventLogger, AuditService


def get_audit_service(request: Request) -> AuditService:
    """Audit service built by the application factory."""
    return request.app.state.audit_service


def get_audit_logger(request: Request) -> AuditEventLogger:
    """Structured audit emitter for domain routes."""
    return request.app.state.audit_logger


__all__ = [
    "get_db",
    "get_current_actor",
    "require_role",
    "audit_resource",
    "get_audit_annotation",
    "get_audit_service",
    "get_audit_logger",
]
