"""
Core module exports
"""
from app.core.config import settings
from app.core.security import (
    Actor,
    hash_password,
    verify_password,
    create_access_token,
    decode_access_token,
    get_current_actor,
    require_role,
)
from app.core.logging import logger, get_logger

__all__ = [
    "settings",
    "Actor",
    "hash_password",
    "verify_password",
    "create_access_token",
    "decode_access_token",
    "get_current_actor",
    "require_role",
    "logger",
    "get_logger",
]
