"""
User management API routes
"""
from enum import Enum
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import (
    get_audit_annotation,
    get_audit_logger,
    get_current_actor,
    get_db,
    require_role,
)
from app.core import Actor, logger
from app.core.middleware import audit_client_ip
from app.db.models import User, UserRole, UserStatus
from app.services.audit import AuditEventLogger

router = APIRouter()


# Request/Response schemas
class UserResponse(BaseModel):
    user_id: str
    email: str
    first_name: str
    last_name: str
    role: str
    status: str


class UpdateUserRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    status: Optional[UserStatus] = None


class ChangeRoleRequest(BaseModel):
    role: UserRole


class ConsentRequest(BaseModel):
    granted: bool
    purpose: str = "clinical_care"


def _to_response(user: User) -> UserResponse:
    return UserResponse(
        user_id=str(user.user_id),
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role.value,
        status=user.status.value,
    )


def _snapshot(user: User, fields) -> dict:
    """Current values of the given fields, enums as their plain values."""
    snapshot = {}
    for field in fields:
        value = getattr(user, field)
        snapshot[field] = value.value if isinstance(value, Enum) else value
    return snapshot


def _get_user_or_404(db: Session, user_id: str) -> User:
    try:
        parsed = UUID(user_id)
    except ValueError:
        parsed = None
    user = db.query(User).filter(User.user_id == parsed).first() if parsed else None
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return user


@router.get("", response_model=List[UserResponse], dependencies=[Depends(require_role(["admin"]))])
def list_users(
    limit: int = 100,
    db: Session = Depends(get_db),
):
    """List users (admin only)."""
    users = db.query(User).order_by(User.created_at.desc()).limit(limit).all()
    return [_to_response(user) for user in users]


@router.get("/me/data-export")
def export_my_data(
    request: Request,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    audit_logger: AuditEventLogger = Depends(get_audit_logger),
    db: Session = Depends(get_db),
):
    """Return everything held about the caller (LGPD data subject access)."""
    user = _get_user_or_404(db, actor.id)

    background_tasks.add_task(
        audit_logger.log_lgpd_event,
        "DATA_EXPORT",
        actor.id,
        actor.email,
        {"format": "json"},
        audit_client_ip(request),
    )

    return {"user": _to_response(user).model_dump()}


@router.post("/me/consent")
def record_consent(
    body: ConsentRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    audit_logger: AuditEventLogger = Depends(get_audit_logger),
):
    """Record that the caller gave or withdrew consent for a processing purpose."""
    background_tasks.add_task(
        audit_logger.log_lgpd_event,
        "CONSENT_GIVEN" if body.granted else "CONSENT_WITHDRAWN",
        actor.id,
        actor.email,
        {"purpose": body.purpose},
        audit_client_ip(request),
    )
    return {"message": "Consent recorded"}


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Get a user; staff other than admins may only read their own record."""
    if actor.role != UserRole.ADMIN.value and actor.id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to read this user",
        )
    return _to_response(_get_user_or_404(db, user_id))


@router.patch("/{user_id}", response_model=UserResponse, dependencies=[Depends(require_role(["admin"]))])
def update_user(
    user_id: str,
    body: UpdateUserRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Update profile fields or account status (admin only)."""
    user = _get_user_or_404(db, user_id)
    changes = body.model_dump(exclude_unset=True)

    annotation = get_audit_annotation(request)
    annotation.old_values = _snapshot(user, changes)

    for field, value in changes.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)

    logger.info(f"User {user_id} updated: {sorted(changes)}")
    return _to_response(user)


@router.put("/{user_id}/role", response_model=UserResponse)
def change_role(
    user_id: str,
    body: ChangeRoleRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    _: dict = Depends(require_role(["admin"])),
    audit_logger: AuditEventLogger = Depends(get_audit_logger),
    db: Session = Depends(get_db),
):
    """Change a user's role (admin only)."""
    user = _get_user_or_404(db, user_id)
    previous_role = user.role.value

    user.role = body.role
    db.commit()
    db.refresh(user)

    background_tasks.add_task(
        audit_logger.log_admin_action,
        "ROLE_CHANGED",
        "users",
        actor.id,
        actor.email,
        {"from": previous_role, "to": body.role.value},
        audit_client_ip(request),
        request.headers.get("user-agent"),
        str(user.user_id),
    )

    logger.info(f"Role of user {user_id} changed from {previous_role} to {body.role.value}")
    return _to_response(user)
