"""
API routes package
"""
from app.api.routes import auth, users, audit

__all__ = [
    "auth",
    "users",
    "audit",
]
