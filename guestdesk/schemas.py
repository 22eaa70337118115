"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses

Field names follow the dashboard's JSON contract (camelCase for derived
fields, `_id` for escalation ids), mapped through aliases where Python
names differ.
"""

from datetime import datetime, timezone
from typing import Annotated, Optional

from pydantic import BaseModel, Field, PlainSerializer, field_validator


# Stored datetimes are naive UTC; emit them with an explicit Z suffix
def _to_utc_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


UtcDatetime = Annotated[datetime, PlainSerializer(_to_utc_iso, return_type=str)]


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SendMessageRequest(BaseModel):
    """Outbound message forwarded to the WhatsApp relay."""
    to: str = Field(..., min_length=1, description="Recipient wa_id")
    text: str = Field(..., min_length=1, description="Message text")

    @field_validator("text")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v


class ResolveEscalationRequest(BaseModel):
    """
    Body of POST /escalations/resolve.

    id is optional at the schema level so that a missing id is reported
    with its own message instead of a generic validation error.
    """
    id: Optional[str] = Field(None, description="Escalation id (24 hex characters)")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class UserSummary(BaseModel):
    """A guest with the text and time of their latest message."""
    wa_id: str
    name: Optional[str] = None
    last_message: Optional[str] = Field(
        None,
        alias="lastMessage",
        serialization_alias="lastMessage",
    )
    last_timestamp: Optional[UtcDatetime] = Field(
        None,
        alias="lastTimestamp",
        serialization_alias="lastTimestamp",
    )

    model_config = {"populate_by_name": True}


class MessageResponse(BaseModel):
    """A single chat message as returned by GET /messages."""
    message_id: Optional[str] = None
    text: str
    direction: str
    timestamp: UtcDatetime
    image: Optional[str] = None

    model_config = {"from_attributes": True}


class SendMessageResponse(BaseModel):
    message: str


class AnalyticsResponse(BaseModel):
    """
    Dashboard analytics.

    responseTime is the mean minutes between creation and resolution of
    resolved escalations, 0 when none are resolved.
    """
    totalMessages: int = Field(..., ge=0)
    totalEscalations: int = Field(..., ge=0)
    totalResolvedEscalations: int = Field(..., ge=0)
    totalPendingEscalations: int = Field(..., ge=0)
    totalUsers: int = Field(..., ge=0)
    totalMessagesSent: int = Field(..., ge=0)
    totalMessagesReceived: int = Field(..., ge=0)
    responseTime: float


class EscalationResponse(BaseModel):
    """
    An escalation, optionally joined with its guest.

    userName and userWaId are null when no user matches user_id.
    """
    id: str = Field(..., alias="_id", serialization_alias="_id")
    user_id: str
    message: str
    status: str
    created_at: UtcDatetime = Field(..., alias="createdAt", serialization_alias="createdAt")
    updated_at: UtcDatetime = Field(..., alias="updatedAt", serialization_alias="updatedAt")
    user_name: Optional[str] = Field(None, alias="userName", serialization_alias="userName")
    user_wa_id: Optional[str] = Field(None, alias="userWaId", serialization_alias="userWaId")

    model_config = {"populate_by_name": True, "from_attributes": True}


class EscalationDocument(BaseModel):
    """Escalation as returned by the resolve endpoint, without the user join."""
    id: str = Field(..., alias="_id", serialization_alias="_id")
    user_id: str
    message: str
    status: str
    created_at: UtcDatetime = Field(..., alias="createdAt", serialization_alias="createdAt")
    updated_at: UtcDatetime = Field(..., alias="updatedAt", serialization_alias="updatedAt")

    model_config = {"populate_by_name": True, "from_attributes": True}


class ResolveEscalationResponse(BaseModel):
    message: str
    escalation: EscalationDocument


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
