"""Chain client capability shared by the Algorand and Solana backends."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import List, Optional, Tuple

from pigeon.models.internal_models import ChainTransaction

logger = logging.getLogger(__name__)


class ChainClientError(Exception):
    """Raised when a node or RPC call fails or returns an unusable response."""
    pass


class ConfirmationTimeoutError(ChainClientError):
    """Raised when a submitted transaction is not confirmed within the wait budget."""
    pass


class InvalidSecretError(ChainClientError):
    """Raised when a secret string does not decode to a signing key."""
    pass


@dataclass
class TransferReceipt:
    """Outcome of a confirmed transfer."""
    transaction_id: str
    confirmed_round: Optional[int] = None


class ChainClient(ABC):
    """
    Network access and key handling for one chain.

    Amounts crossing this interface are integers in the chain's base unit
    (microAlgos, lamports). Secrets are the chain's raw private key string.
    """

    asset: str = ""
    decimals: int = 0
    fee: int = 0

    def __init__(self, admin_secret: Optional[str] = None):
        self._admin_secret = admin_secret or None
        self._admin_address: Optional[str] = None
        if self._admin_secret:
            # Loaded once; a malformed admin key is a configuration error
            self._admin_address = self.address_from_secret(self._admin_secret)

    @property
    def admin_secret(self) -> Optional[str]:
        return self._admin_secret

    @property
    def admin_address(self) -> Optional[str]:
        return self._admin_address

    @property
    def has_admin(self) -> bool:
        return self._admin_secret is not None

    def to_base_units(self, amount: Decimal) -> int:
        """Convert a display amount to base units, truncating extra precision."""
        scaled = (amount * (Decimal(10) ** self.decimals)).to_integral_value(rounding=ROUND_DOWN)
        return int(scaled)

    def format_amount(self, base_units: int) -> str:
        """Render base units with the chain's full precision, e.g. ``1.500000``."""
        value = Decimal(base_units) / (Decimal(10) ** self.decimals)
        return f"{value:.{self.decimals}f}"

    @abstractmethod
    def generate_account(self) -> Tuple[str, str]:
        """Create a fresh keypair. Returns ``(address, secret)``."""

    @abstractmethod
    def address_from_secret(self, secret: str) -> str:
        """Derive the address of ``secret``. Raises InvalidSecretError."""

    @abstractmethod
    def is_valid_address(self, value: str) -> bool:
        """Whether ``value`` parses as a native address on this chain."""

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Balance of ``address`` in base units."""

    async def current_fee(self) -> int:
        """Fee in base units the next transfer will pay."""
        return self.fee

    @abstractmethod
    async def transfer(
        self,
        secret: str,
        to_address: str,
        amount: int,
        note: Optional[str] = None
    ) -> TransferReceipt:
        """Sign, submit and wait for confirmation of a native transfer."""

    @abstractmethod
    async def list_transactions(self, address: str, limit: int) -> List[ChainTransaction]:
        """Most recent transactions touching ``address``, newest first."""

    @abstractmethod
    def explorer_url(self, transaction_id: str) -> str:
        """Block explorer link for ``transaction_id``."""

    async def aclose(self) -> None:
        """Release network resources."""
