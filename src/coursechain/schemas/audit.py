"""Audit log Pydantic schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuditLogRead(BaseModel):
    """One recorded audit event."""

    id: str
    user_id: str | None = None
    wallet_address: str | None = None
    action: str
    resource_type: str
    resource_id: str | None = None
    timestamp: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] | None = Field(None, validation_alias="details")
    status: str
    error_message: str | None = None
    risk_score: int

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """A page of audit events, newest first."""

    logs: list[AuditLogRead]
    limit: int
    offset: int = 0
