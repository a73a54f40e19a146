"""Result types returned by wallet operations.

Wallet operations never raise across their boundary. Every call returns one of
these dataclasses; callers check ``success`` and, on failure, ``error_kind``
for the category and ``error`` for the user-facing text.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class WalletErrorKind(str, Enum):
    """Failure categories shared by both chains."""

    VALIDATION_ERROR = "validation_error"
    NOT_ONBOARDED = "not_onboarded"
    LEGACY_ACCOUNT = "legacy_account"
    UNSUPPORTED_ASSET = "unsupported_asset"
    INVALID_AMOUNT = "invalid_amount"
    RECIPIENT_NOT_FOUND = "recipient_not_found"
    WRONG_PASSWORD = "wrong_password"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    TRANSACTION_FAILED = "transaction_failed"
    CHAIN_QUERY_ERROR = "chain_query_error"
    STORE_ERROR = "store_error"
    RATE_LIMITED = "rate_limited"
    ADMIN_WALLET_NOT_CONFIGURED = "admin_wallet_not_configured"
    ADMIN_INSUFFICIENT_BALANCE = "admin_insufficient_balance"
    INTERNAL_ERROR = "internal_error"


@dataclass
class OperationResult:
    """Common shape of every wallet operation result."""

    success: bool = True
    error: Optional[str] = None
    error_kind: Optional[WalletErrorKind] = None

    def to_dict(self) -> dict:
        data = {}
        for name, value in self.__dict__.items():
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, list):
                value = [item.to_dict() if hasattr(item, "to_dict") else item for item in value]
            data[name] = value
        return data


@dataclass
class AddressResult(OperationResult):
    address: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class BalanceResult(OperationResult):
    balance: Optional[str] = None
    asset: Optional[str] = None
    address: Optional[str] = None


@dataclass
class OnboardResult(OperationResult):
    already_onboarded: bool = False
    address: Optional[str] = None


@dataclass
class SendResult(OperationResult):
    transaction_id: Optional[str] = None
    confirmed_round: Optional[int] = None
    explorer_url: Optional[str] = None
    amount: Optional[str] = None
    asset: Optional[str] = None
    recipient_address: Optional[str] = None
    shortfall: Optional[str] = None


@dataclass
class FundResult(OperationResult):
    transaction_id: Optional[str] = None
    confirmed_round: Optional[int] = None
    explorer_url: Optional[str] = None
    amount: Optional[str] = None
    asset: Optional[str] = None
    retry_after_seconds: Optional[int] = None


@dataclass
class TransactionSummary:
    transaction_id: str
    type: str
    timestamp: Optional[str]  # ISO-8601
    sender: str
    explorer_url: str
    amount: Optional[str] = None
    receiver: Optional[str] = None

    def to_dict(self) -> dict:
        return {name: value for name, value in self.__dict__.items() if value is not None}


@dataclass
class TransactionsResult(OperationResult):
    address: Optional[str] = None
    asset: Optional[str] = None
    transactions: List[TransactionSummary] = field(default_factory=list)


@dataclass
class ExportSecretResult(OperationResult):
    address: Optional[str] = None
    secret: Optional[str] = None


def failure(result_type, kind: WalletErrorKind, message: str, **fields):
    """Build a failed result of ``result_type``."""
    return result_type(success=False, error=message, error_kind=kind, **fields)
