"""Data models for the Pigeon SMS wallet service."""

from .api_models import (
    HttpSmsEvent,
    HttpSmsEventData,
    GatewaySmsPayload,
    HealthResponse,
    ErrorResponse
)
from .internal_models import (
    Chain,
    IntentType,
    IntentParams,
    IntentResult,
    PendingAction,
    PendingSession,
    SendParams,
    UserAccount
)
from .results import WalletErrorKind

__all__ = [
    "HttpSmsEvent",
    "HttpSmsEventData",
    "GatewaySmsPayload",
    "HealthResponse",
    "ErrorResponse",
    "Chain",
    "IntentType",
    "IntentParams",
    "IntentResult",
    "PendingAction",
    "PendingSession",
    "SendParams",
    "UserAccount",
    "WalletErrorKind"
]
