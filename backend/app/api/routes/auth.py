"""
Authentication API routes

Login and logout are audited by the authentication hook of the audit
middleware, so these routes opt out of the generic request audit.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from app.api.deps import audit_resource, get_current_actor, get_db
from app.core import Actor, create_access_token, logger, verify_password
from app.db.models import User, UserStatus

router = APIRouter(
    dependencies=[Depends(audit_resource("authentication", skip_audit=True))],
)


# Request/Response schemas
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    role: str


class MeResponse(BaseModel):
    user_id: str
    email: str
    role: str


@router.post("/login", response_model=TokenResponse)
def login(body: LoginRequest, request: Request, db: Session = Depends(get_db)):
    """Authenticate user and return token."""
    user = db.query(User).filter(User.email == body.email).first()

    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if user.status == UserStatus.SUSPENDED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account suspended",
        )

    token = create_access_token({
        "sub": str(user.user_id),
        "email": user.email,
        "role": user.role.value,
    })

    # Lets the audit trail attribute the LOGIN entry to this user
    request.state.actor = Actor(id=str(user.user_id), email=user.email, role=user.role.value)

    logger.info(f"User logged in: {user.user_id}")

    return TokenResponse(
        access_token=token,
        user_id=str(user.user_id),
        role=user.role.value,
    )


@router.post("/logout")
def logout(actor: Actor = Depends(get_current_actor)):
    """Logout user (client-side token invalidation)."""
    logger.info(f"User logged out: {actor.id}")
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=MeResponse)
def me(actor: Actor = Depends(get_current_actor)):
    """Return the authenticated caller."""
    return MeResponse(user_id=actor.id, email=actor.email or "", role=actor.role or "")
