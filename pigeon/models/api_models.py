"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class HttpSmsEventData(BaseModel):
    """``data`` block of an httpSMS CloudEvent."""

    model_config = ConfigDict(extra="allow")

    contact: Optional[str] = Field(None, description="Sender phone (incoming) or recipient (outgoing)")
    content: Optional[str] = Field(None, description="SMS body text")
    owner: Optional[str] = Field(None, description="The gateway's own phone number")
    message_id: Optional[str] = None
    sim: Optional[str] = None
    timestamp: Optional[str] = None
    user_id: Optional[str] = None


class HttpSmsEvent(BaseModel):
    """CloudEvents envelope posted by the httpSMS gateway."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = Field(None, description="Event id used for deduplication")
    type: Optional[str] = Field(None, description="Event type, e.g. message.phone.received")
    source: Optional[str] = None
    specversion: Optional[str] = None
    time: Optional[str] = None
    data: Optional[HttpSmsEventData] = None


class GatewaySmsPayload(BaseModel):
    """Payload posted by a hardware SMS gateway (ESP32 + SIM800L)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    sender: Optional[str] = Field(None, alias="from")
    message: Optional[str] = None
    device_id: Optional[str] = Field(None, alias="deviceId")
    message_id: Optional[str] = Field(None, alias="messageId")


class PhoneRequest(BaseModel):
    """Base for wallet API requests keyed by phone."""

    phone: str = Field(..., min_length=1, max_length=32, description="User's phone number (identity key)")

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        if not any(c.isdigit() for c in v):
            raise ValueError('Phone number must contain digits')
        return v


class BalanceRequest(PhoneRequest):
    asset: Optional[str] = None


class PasswordRequest(PhoneRequest):
    password: str = Field(..., min_length=1, description="Wallet password; never stored")


class SendRequest(PasswordRequest):
    amount: str = Field(..., min_length=1)
    recipient: str = Field(..., min_length=1, description="Native address or onboarded phone number")
    asset: Optional[str] = None

    @field_validator('amount', mode='before')
    @classmethod
    def amount_as_text(cls, v):
        # JSON numbers are accepted and kept as typed
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class TransactionsRequest(PhoneRequest):
    limit: int = Field(5, ge=1, le=50)


class ChangePasswordRequest(PasswordRequest):
    new_password: str = Field(..., min_length=1)


class SmsCommandRequest(BaseModel):
    """Direct command API: classify a message and run it with an explicit password."""

    model_config = ConfigDict(populate_by_name=True)

    sender: Optional[str] = Field(None, alias="from")
    message: Optional[str] = None
    password: Optional[str] = None


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field("1.0.0", description="Service version")


class ErrorResponse(BaseModel):
    """Standard error response body for wallet API failures."""

    ok: bool = False
    error: str = Field(..., description="Human-readable error message")
    error_kind: Optional[str] = Field(None, description="Machine-readable failure category")
    correlation_id: Optional[str] = None
