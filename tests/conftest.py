"""
Shared test doubles: an in-process chain client and a controllable clock.
"""

import asyncio
import uuid
from typing import List, Optional, Tuple

import pytest

from pigeon.clients.account_store import InMemoryAccountStore
from pigeon.clients.chain_client import ChainClient, InvalidSecretError, TransferReceipt
from pigeon.models.internal_models import ChainTransaction
from pigeon.services.rate_limit import FundRateLimiter
from pigeon.services.wallet_service import AlgorandWalletOperations, SolanaWalletOperations

ADMIN_SECRET = "SECRET-admin"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChainClient(ChainClient):
    """
    Ledger kept in a dict. Addresses are ``ADDR-<id>`` and the matching
    secret is ``SECRET-<id>``.
    """

    asset = "ALGO"
    decimals = 6
    fee = 1000

    def __init__(self, admin_secret: Optional[str] = None):
        self.balances = {}
        self.transfers = []
        self.history: List[ChainTransaction] = []
        self.balance_error: Optional[Exception] = None
        self.transfer_error: Optional[Exception] = None
        self.network_fee: Optional[int] = None
        self.closed = False
        super().__init__(admin_secret)

    def generate_account(self) -> Tuple[str, str]:
        key_id = uuid.uuid4().hex[:12]
        return f"ADDR-{key_id}", f"SECRET-{key_id}"

    def address_from_secret(self, secret: str) -> str:
        if not secret.startswith("SECRET-"):
            raise InvalidSecretError("not a fake secret")
        return "ADDR-" + secret[len("SECRET-"):]

    def is_valid_address(self, value: str) -> bool:
        return value.startswith("ADDR-")

    async def get_balance(self, address: str) -> int:
        if self.balance_error is not None:
            raise self.balance_error
        return self.balances.get(address, 0)

    async def current_fee(self) -> int:
        return self.fee if self.network_fee is None else self.network_fee

    async def transfer(self, secret, to_address, amount, note=None) -> TransferReceipt:
        # Yield so concurrent callers can interleave here
        await asyncio.sleep(0)
        if self.transfer_error is not None:
            raise self.transfer_error

        sender = self.address_from_secret(secret)
        self.balances[sender] = self.balances.get(sender, 0) - amount - await self.current_fee()
        self.balances[to_address] = self.balances.get(to_address, 0) + amount
        self.transfers.append({"from": sender, "to": to_address, "amount": amount, "note": note})
        return TransferReceipt(transaction_id=f"TX{len(self.transfers)}", confirmed_round=100 + len(self.transfers))

    async def list_transactions(self, address: str, limit: int) -> List[ChainTransaction]:
        return list(self.history)

    def explorer_url(self, transaction_id: str) -> str:
        return f"https://explorer.test/tx/{transaction_id}"

    async def aclose(self) -> None:
        self.closed = True


class FakeSolanaClient(FakeChainClient):
    asset = "SOL"
    decimals = 9
    fee = 5000


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chain_client():
    return FakeChainClient(admin_secret=ADMIN_SECRET)


@pytest.fixture
def account_store():
    return InMemoryAccountStore("algorand")


@pytest.fixture
def algorand_wallet(account_store, chain_client, clock):
    return AlgorandWalletOperations(
        account_store,
        chain_client,
        rate_limiter=FundRateLimiter(cooldown_seconds=86400, clock=clock),
        clock=clock
    )


@pytest.fixture
def solana_client():
    return FakeSolanaClient(admin_secret=ADMIN_SECRET)


@pytest.fixture
def solana_wallet(solana_client, clock):
    return SolanaWalletOperations(
        InMemoryAccountStore("solana"),
        solana_client,
        rate_limiter=FundRateLimiter(cooldown_seconds=86400, clock=clock),
        clock=clock
    )
