"""Internal data models for the Pigeon SMS wallet service."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Chain(str, Enum):
    """Supported blockchains."""

    ALGORAND = "algorand"
    SOLANA = "solana"

    @property
    def native_asset(self) -> str:
        return "ALGO" if self is Chain.ALGORAND else "SOL"


class IntentType(str, Enum):
    """Intents the classifier may return. Values are the classifier's vocabulary."""

    SEND = "send"
    GET_BALANCE = "get_balance"
    GET_TRANSACTIONS = "get_txn"
    ONBOARD = "onboard"
    GET_ADDRESS = "get_address"
    FUND = "fund"
    EXPORT_SECRET = "get_pvt_key"
    UNKNOWN = "unknown"


class PendingAction(str, Enum):
    """Actions that need a password before they can run."""

    SEND = "send"
    ONBOARD = "onboard"
    EXPORT_SECRET = "export_secret"


@dataclass
class SendParams:
    """Parameters of a peer-to-peer transfer as typed by the user."""

    amount: str
    recipient: str
    asset: Optional[str] = None


@dataclass
class IntentParams:
    """Fields extracted from a message. Anything absent stays None."""

    amount: Optional[str] = None
    asset: Optional[str] = None
    recipient: Optional[str] = None
    transaction_id: Optional[str] = None
    password: Optional[str] = None
    chain: Optional[Chain] = None

    def to_public_dict(self) -> dict:
        """Params safe to echo back to a caller (never includes the password)."""
        data = {
            "amount": self.amount,
            "asset": self.asset,
            "recipient": self.recipient,
            "transaction_id": self.transaction_id,
            "chain": self.chain.value if self.chain else None,
        }
        return {key: value for key, value in data.items() if value is not None}


@dataclass
class IntentResult:
    """Structured interpretation of one inbound message."""

    intent: IntentType
    params: IntentParams
    raw_message: str


@dataclass
class UserAccount:
    """A wallet registered for a phone on one chain."""

    phone: str  # Normalized phone number
    address: Optional[str]
    encrypted_secret: Optional[str]  # Vault blob, never the plaintext secret
    created_at: int  # Unix seconds

    @property
    def is_password_protected(self) -> bool:
        return bool(self.address and self.encrypted_secret)


@dataclass
class PendingSession:
    """An action waiting for the user's password reply."""

    phone: str
    action: PendingAction
    chain: Chain
    created_at: float
    send_params: Optional[SendParams] = None

    def __post_init__(self):
        if self.action is PendingAction.SEND and self.send_params is None:
            raise ValueError("Pending send sessions must carry send parameters")

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.created_at > ttl_seconds


@dataclass
class ChainTransaction:
    """One entry of an account's on-chain history, in base units."""

    transaction_id: str
    type: str
    timestamp: Optional[int]  # Unix seconds
    sender: str
    receiver: Optional[str] = None
    amount: Optional[int] = None


@dataclass
class InboundSms:
    """An inbound gateway event normalized from either webhook shape."""

    event_id: Optional[str]
    event_type: str
    sender: str
    content: str
    owner: Optional[str] = None
    source: str = "httpsms"


@dataclass
class SmsProcessResult:
    """Reply text for one message and whether the message carried a password."""

    reply: str
    contained_password: bool = False


@dataclass
class DispatchOutcome:
    """What happened to one inbound event, for the HTTP layer to report."""

    status: str  # "duplicate" | "acknowledged" | "processed"
    message: str
    reply: Optional[str] = None
    contained_password: bool = False
    sms_sent: Optional[bool] = None
    sms_send_error: Optional[str] = None
    security_warning_queued: bool = False
