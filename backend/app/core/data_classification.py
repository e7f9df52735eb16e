"""
Data classification and PII handling for audit snapshots.
Defines sensitivity levels and masks request payloads before they are stored.
"""

from enum import Enum
from typing import Any


class DataClassification(Enum):
    """Data sensitivity classification levels."""
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"  # credentials, health and national id data


FIELD_CLASSIFICATIONS: dict[str, DataClassification] = {
    # Credentials
    "password": DataClassification.RESTRICTED,
    "password_hash": DataClassification.RESTRICTED,
    "current_password": DataClassification.RESTRICTED,
    "new_password": DataClassification.RESTRICTED,
    "token": DataClassification.RESTRICTED,
    "access_token": DataClassification.RESTRICTED,
    "refresh_token": DataClassification.RESTRICTED,

    # Patient identity
    "cpf": DataClassification.RESTRICTED,
    "rg": DataClassification.RESTRICTED,
    "phone": DataClassification.CONFIDENTIAL,
    "birth_date": DataClassification.CONFIDENTIAL,
    "date_of_birth": DataClassification.CONFIDENTIAL,
    "address": DataClassification.CONFIDENTIAL,

    # Clinical data
    "diagnosis": DataClassification.RESTRICTED,
    "medical_history": DataClassification.RESTRICTED,
    "prescription": DataClassification.RESTRICTED,

    # Financial
    "card_number": DataClassification.RESTRICTED,
    "bank_account": DataClassification.RESTRICTED,
}


def get_field_classification(field_name: str) -> DataClassification:
    """Get the classification level for a field."""
    return FIELD_CLASSIFICATIONS.get(
        field_name.lower(),
        DataClassification.INTERNAL
    )


def mask_value(value: str, classification: DataClassification) -> str:
    """Mask a value based on its classification."""
    if classification in (DataClassification.PUBLIC, DataClassification.INTERNAL):
        return value
    elif classification == DataClassification.CONFIDENTIAL:
        # Show first and last characters
        if len(value) <= 4:
            return "*" * len(value)
        return f"{value[0]}{'*' * (len(value) - 2)}{value[-1]}"
    else:  # RESTRICTED
        return "*" * min(len(value), 8)


def sanitize_for_logging(data: dict[str, Any]) -> dict[str, Any]:
    """Sanitize a dictionary for safe logging and storage."""
    sanitized = {}

    for key, value in data.items():
        classification = get_field_classification(key)

        if value is None:
            sanitized[key] = None
        elif isinstance(value, str):
            sanitized[key] = mask_value(value, classification)
        elif isinstance(value, dict):
            sanitized[key] = sanitize_for_logging(value)
        elif isinstance(value, list):
            sanitized[key] = [
                sanitize_for_logging(item) if isinstance(item, dict) else item
                for item in value
            ]
        elif classification == DataClassification.RESTRICTED:
            sanitized[key] = "********"
        else:
            sanitized[key] = value

    return sanitized


def sanitize_snapshot(value: Any) -> Any:
    """Sanitize an arbitrary JSON value captured from a request body."""
    if isinstance(value, dict):
        return sanitize_for_logging(value)
    if isinstance(value, list):
        return [sanitize_snapshot(item) for item in value]
    return value
