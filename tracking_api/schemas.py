"""
Pydantic models for API request/response validation.

Field names on the wire are camelCase (`userID`, `sessionId`, ...). Required
fields are declared optional here so the gateway can answer a missing field
with 400 rather than FastAPI's 422.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CheckUserRequest(CamelModel):
    user_id: Optional[str] = Field(None, alias="userID", description="A-number of the research subject")


class CheckUserResponse(CamelModel):
    authorized: bool = True
    request_count: int = Field(..., alias="requestCount")
    max_cap: int = Field(..., alias="maxCap")


class SubmitRequest(CamelModel):
    user_id: Optional[str] = Field(None, alias="userID")
    prompt: Optional[str] = Field(None, description="Prompt text sent to the tutor")
    session_id: Optional[str] = Field(None, alias="sessionId")


class SubmitResponse(CamelModel):
    response: str = Field(..., description="Tutor's reply")
    new_request_count: int = Field(..., alias="newRequestCount")
    max_cap: int = Field(..., alias="maxCap")
    token_count: Optional[int] = Field(None, alias="tokenCount")


class ResetRequest(CamelModel):
    user_id: Optional[str] = Field(None, alias="userID")
    session_id: Optional[str] = Field(None, alias="sessionId")


class ResetResponse(BaseModel):
    message: str


class LogEventRequest(CamelModel):
    user_id: Optional[str] = Field(None, alias="userID")
    session_id: Optional[str] = Field(None, alias="sessionId")
    event_type: Optional[str] = Field(None, alias="eventType")
    data: Optional[Dict[str, Any]] = Field(None, description="Event-specific payload")


class LogEventResponse(BaseModel):
    success: bool = True


class HealthResponse(BaseModel):
    """Model for health check response."""

    status: str = Field(..., description="Health status")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Response timestamp")
