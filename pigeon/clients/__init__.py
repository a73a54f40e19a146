"""Client modules for external service integrations."""

from pigeon.clients.account_store import (
    ChainAccountStore,
    InMemoryAccountStore,
    AccountStoreError,
    AccountExistsError,
    AccountNotFoundError
)

from pigeon.clients.chain_client import (
    ChainClient,
    ChainClientError,
    ConfirmationTimeoutError,
    InvalidSecretError,
    TransferReceipt
)

from pigeon.clients.gemini_client import GeminiClient, ClassifierError
from pigeon.clients.sms_client import HttpSmsNotifier, NotifyResult

__all__ = [
    "ChainAccountStore",
    "InMemoryAccountStore",
    "AccountStoreError",
    "AccountExistsError",
    "AccountNotFoundError",
    "ChainClient",
    "ChainClientError",
    "ConfirmationTimeoutError",
    "InvalidSecretError",
    "TransferReceipt",
    "GeminiClient",
    "ClassifierError",
    "HttpSmsNotifier",
    "NotifyResult"
]
