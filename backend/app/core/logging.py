"""
Logging configuration with field masking for sensitive data
"""
import logging
import re

from app.core.config import settings


# Patterns to mask in logs
MASK_PATTERNS = [
    (r"'password':\s*'[^']*'", "'password': '***'"),
    (r'"password":\s*"[^"]*"', '"password": "***"'),
    (r"'access_token':\s*'[^']*'", "'access_token': '***'"),
    (r'"access_token":\s*"[^"]*"', '"access_token": "***"'),
    (r"Bearer\s+[A-Za-z0-9\-_\.]+", "Bearer ***"),
    (r'"cpf":\s*"[^"]*"', '"cpf": "***.***.***-**"'),
]


class MaskingFormatter(logging.Formatter):
    """Custom formatter that masks sensitive fields."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for pattern, replacement in MASK_PATTERNS:
            message = re.sub(pattern, replacement, message, flags=re.IGNORECASE)
        return message


def setup_logging() -> logging.Logger:
    """Configure application logging."""
    logger = logging.getLogger("clinic")
    logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    formatter = MaskingFormatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

    return logger


# Global logger instance
logger = setup_logging()


def get_logger(name: str) -> logging.Logger:
    """Return a child of the application logger for a module."""
    return logger.getChild(name)
