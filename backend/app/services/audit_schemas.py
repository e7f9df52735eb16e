"""
Audit Schemas - typed entries, filters and query results for the audit trail.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, IPvAnyAddress, JsonValue, field_serializer
from pydantic.alias_generators import to_camel


def to_iso_utc(value: datetime) -> str:
    """Render a UTC timestamp as ISO-8601 with milliseconds and a Z suffix."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="milliseconds") + "Z"


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to the naive UTC form stored in the database."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class AuditLogEntry(BaseModel):
    """A single audit event as submitted by the write path."""
    user_id: Optional[UUID] = None
    user_email: Optional[EmailStr] = None
    ip_address: Optional[IPvAnyAddress] = None
    user_agent: Optional[str] = None
    action: str = Field(..., min_length=1, max_length=100)
    resource: str = Field(..., min_length=1, max_length=100)
    resource_id: Optional[str] = Field(None, max_length=100)
    old_values: Optional[JsonValue] = None
    new_values: Optional[JsonValue] = None


@dataclass
class AuditQueryFilters:
    """Read-side filters; every field except paging is optional."""
    user_id: Optional[UUID] = None
    action: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = 1
    limit: int = 50


class CamelModel(BaseModel):
    """Base for read models; serialized with camelCase keys on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuditUserSummary(CamelModel):
    """Denormalized view of the acting user, resolved for display only."""
    id: UUID
    email: str
    name: str
    role: str


class AuditLogRecord(CamelModel):
    id: UUID
    user_id: Optional[UUID] = None
    user_email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    old_values: Optional[JsonValue] = None
    new_values: Optional[JsonValue] = None
    created_at: datetime
    user: Optional[AuditUserSummary] = None

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime) -> str:
        return to_iso_utc(value)


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class AuditLogPage(CamelModel):
    logs: List[AuditLogRecord]
    pagination: Pagination


class ActionStat(CamelModel):
    action: str
    count: int


class ResourceStat(CamelModel):
    resource: str
    count: int


class UserStat(CamelModel):
    user_id: UUID
    count: int
    user: Optional[AuditUserSummary] = None


class AuditStatistics(CamelModel):
    total_logs: int
    action_stats: List[ActionStat]
    resource_stats: List[ResourceStat]
    user_stats: List[UserStat]


class AuditExport(CamelModel):
    data: AuditLogPage
    exported_at: datetime

    @field_serializer("exported_at")
    def serialize_exported_at(self, value: datetime) -> str:
        return to_iso_utc(value)
