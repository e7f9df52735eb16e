"""
Audit trail API routes
"""
from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, status
from fastapi.responses import JSONResponse, Response
from pydantic import IPvAnyAddress

from app.api.deps import get_audit_service, get_current_actor, require_role
from app.core import Actor, get_logger
from app.services.audit import AuditService
from app.services.audit_schemas import AuditQueryFilters

logger = get_logger(__name__)

router = APIRouter()

admin_only = Depends(require_role(["admin"]))


def _success(data: Any) -> dict:
    return {
        "success": True,
        "data": data.model_dump(mode="json", by_alias=True),
    }


def _failure(code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": {"code": code, "message": message},
        },
    )


def _attachment_name(extension: str) -> str:
    return f'attachment; filename="audit_logs_{datetime.utcnow().date().isoformat()}.{extension}"'


@router.get("/logs", dependencies=[admin_only])
def get_audit_logs(
    user_id: Optional[UUID] = Query(None, alias="userId"),
    action: Optional[str] = Query(None),
    resource: Optional[str] = Query(None),
    resource_id: Optional[str] = Query(None, alias="resourceId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    ip_address: Optional[IPvAnyAddress] = Query(None, alias="ipAddress"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    audit_service: AuditService = Depends(get_audit_service),
):
    """Get audit logs with optional filters."""
    try:
        result = audit_service.get_audit_logs(
            AuditQueryFilters(
                user_id=user_id,
                action=action,
                resource=resource,
                resource_id=resource_id,
                start_date=start_date,
                end_date=end_date,
                ip_address=str(ip_address) if ip_address else None,
                page=page,
                limit=limit,
            )
        )
        return _success(result)
    except Exception as e:
        logger.error(f"Failed to get audit logs: {e}")
        return _failure("AUDIT_FETCH_ERROR", "Failed to retrieve audit logs")


@router.get("/users/{user_id}/history", dependencies=[admin_only])
def get_user_history(
    user_id: UUID = Path(...),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    audit_service: AuditService = Depends(get_audit_service),
):
    """Get audit history for a specific user."""
    try:
        return _success(audit_service.get_user_audit_history(user_id, page, limit))
    except Exception as e:
        logger.error(f"Failed to get user audit history: {e}")
        return _failure("USER_AUDIT_ERROR", "Failed to retrieve user audit history")


@router.get("/resources/{resource}/history", dependencies=[admin_only])
def get_resource_history(
    resource: str = Path(..., min_length=1),
    resource_id: Optional[str] = Query(None, alias="resourceId"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    audit_service: AuditService = Depends(get_audit_service),
):
    """Get audit history for a resource, optionally narrowed to one instance."""
    try:
        return _success(
            audit_service.get_resource_audit_history(resource, resource_id, page, limit)
        )
    except Exception as e:
        logger.error(f"Failed to get resource audit history: {e}")
        return _failure("RESOURCE_AUDIT_ERROR", "Failed to retrieve resource audit history")


@router.get("/recent", dependencies=[admin_only])
def get_recent_activity(
    hours: int = Query(24, ge=1, le=168),
    limit: int = Query(100, ge=1, le=500),
    audit_service: AuditService = Depends(get_audit_service),
):
    """Get recent audit activity (at most one week back)."""
    try:
        return _success(audit_service.get_recent_activity(hours, limit))
    except Exception as e:
        logger.error(f"Failed to get recent activity: {e}")
        return _failure("RECENT_ACTIVITY_ERROR", "Failed to retrieve recent activity")


@router.get("/statistics", dependencies=[admin_only])
def get_statistics(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    audit_service: AuditService = Depends(get_audit_service),
):
    """Get audit statistics: totals, action/resource breakdowns and top users."""
    try:
        return _success(audit_service.get_audit_statistics(start_date, end_date))
    except Exception as e:
        logger.error(f"Failed to get audit statistics: {e}")
        return _failure("STATISTICS_ERROR", "Failed to retrieve audit statistics")


@router.get("/export", dependencies=[admin_only])
def export_logs(
    format: Literal["csv", "json"] = Query("csv"),
    user_id: Optional[UUID] = Query(None, alias="userId"),
    action: Optional[str] = Query(None),
    resource: Optional[str] = Query(None),
    resource_id: Optional[str] = Query(None, alias="resourceId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    ip_address: Optional[IPvAnyAddress] = Query(None, alias="ipAddress"),
    audit_service: AuditService = Depends(get_audit_service),
):
    """Export audit logs as a CSV or JSON attachment."""
    filters = AuditQueryFilters(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
        ip_address=str(ip_address) if ip_address else None,
    )
    try:
        if format == "csv":
            return Response(
                content=audit_service.export_to_csv(filters),
                media_type="text/csv",
                headers={"Content-Disposition": _attachment_name("csv")},
            )

        export = audit_service.export_to_json(filters)
        return JSONResponse(
            content={
                "success": True,
                **export.model_dump(mode="json", by_alias=True),
            },
            headers={"Content-Disposition": _attachment_name("json")},
        )
    except Exception as e:
        logger.error(f"Failed to export audit logs: {e}")
        return _failure("EXPORT_ERROR", "Failed to export audit logs")


@router.get("/my-history")
def get_my_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    audit_service: AuditService = Depends(get_audit_service),
):
    """Get the audit history of the calling user."""
    try:
        return _success(audit_service.get_user_audit_history(UUID(actor.id), page, limit))
    except Exception as e:
        logger.error(f"Failed to get my audit history: {e}")
        return _failure("MY_AUDIT_ERROR", "Failed to retrieve your audit history")
