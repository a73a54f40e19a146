"""
Wallet operations for both supported chains.

This module provides the business logic for:
- Onboarding a phone number with a freshly generated, password-encrypted key
- Address and balance lookups
- Peer-to-peer sends with password unlock and balance checks
- Rate-limited testnet funding from the admin wallet
- Transaction history, secret export and password rotation

Every public operation returns a result dataclass from ``pigeon.models.results``.
Client and store exceptions are converted at this boundary and never escape.
"""

import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from functools import wraps
from typing import Callable, Dict, Optional

from pigeon.clients.account_store import (
    AccountExistsError,
    AccountStoreError,
    ChainAccountStore,
    InMemoryAccountStore
)
from pigeon.clients.chain_client import (
    ChainClient,
    ChainClientError,
    ConfirmationTimeoutError,
    InvalidSecretError
)
from pigeon.config import settings
from pigeon.models.internal_models import Chain, SendParams, UserAccount
from pigeon.models.results import (
    AddressResult,
    BalanceResult,
    ExportSecretResult,
    FundResult,
    OnboardResult,
    SendResult,
    TransactionSummary,
    TransactionsResult,
    WalletErrorKind,
    failure
)
from pigeon.observability import record_wallet_operation
from pigeon.services.rate_limit import FundRateLimiter, describe_wait
from pigeon.utils.mnemonic_vault import DecryptionError, decrypt, encrypt
from pigeon.utils.phone import normalize_phone

logger = logging.getLogger(__name__)

WRONG_PASSWORD_MESSAGE = "Wrong password. Please start your command again."
NOT_ONBOARDED_MESSAGE = "Account not found or not onboarded"
LEGACY_ACCOUNT_MESSAGE = "Account exists from legacy flow; please contact support or use a new phone number"
MAX_HISTORY_LIMIT = 50


def parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    """Parse a user-typed amount. Returns None unless it is a finite positive number."""
    if raw is None:
        return None
    try:
        amount = Decimal(str(raw).strip())
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def wallet_operation(result_type):
    """Record metrics and turn anything unexpected into an INTERNAL_ERROR result."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            start_time = time.time()
            try:
                result = await func(self, *args, **kwargs)
            except Exception as e:
                logger.exception(f"Unexpected error in {self.chain.value} {func.__name__}: {e}")
                result = failure(result_type, WalletErrorKind.INTERNAL_ERROR, f"{func.__name__} failed: {e}")

            outcome = "success" if result.success else result.error_kind.value
            record_wallet_operation(self.chain.value, func.__name__, outcome, time.time() - start_time)
            return result
        return wrapper
    return decorator


class WalletOperations:
    """
    Chain-agnostic wallet algorithm.

    Subclasses only declare chain constants; the steps are identical for
    every chain because key handling and network access live in the
    ``ChainClient``.
    """

    chain: Chain
    fund_amount: Decimal = Decimal("0")
    reserve: int = 0  # Base units that must stay on a sending account
    send_note: Optional[str] = None
    fund_note: Optional[str] = None

    def __init__(
        self,
        store: ChainAccountStore,
        client: ChainClient,
        rate_limiter: Optional[FundRateLimiter] = None,
        clock: Callable[[], float] = time.time
    ):
        self.store = store
        self.client = client
        self.rate_limiter = rate_limiter or FundRateLimiter(settings.fund_cooldown_seconds)
        self._clock = clock

    @property
    def asset(self) -> str:
        return self.chain.native_asset

    @property
    def chain_label(self) -> str:
        return self.chain.value.capitalize()

    def _format(self, base_units: int) -> str:
        return self.client.format_amount(base_units)

    def _unsupported_asset(self, asset: Optional[str]) -> bool:
        return bool(asset) and asset.strip().upper() != self.asset

    async def _find_user(self, phone: str) -> Optional[UserAccount]:
        return await self.store.find_user(phone)

    async def _unlock(self, user: UserAccount, password: str) -> Optional[str]:
        """
        Decrypt the user's secret and confirm it controls the stored address.

        Returns None on any failure; callers must not tell the user which
        check failed.
        """
        try:
            secret = await asyncio.to_thread(decrypt, user.encrypted_secret, password)
            derived = self.client.address_from_secret(secret)
        except (DecryptionError, InvalidSecretError):
            logger.warning(f"Wallet unlock failed for {user.phone} on {self.chain.value}")
            return None

        if derived != user.address:
            logger.warning(f"Wallet unlock failed for {user.phone} on {self.chain.value}")
            return None
        return secret

    async def _resolve_recipient(self, recipient: str) -> Optional[str]:
        """A native address is used as-is; anything else is looked up as a phone."""
        if self.client.is_valid_address(recipient):
            return recipient
        user = await self._find_user(normalize_phone(recipient))
        if user is None or not user.address:
            return None
        return user.address

    @wallet_operation(AddressResult)
    async def get_address(self, phone: str) -> AddressResult:
        phone = normalize_phone(phone or "")
        if not phone.strip():
            return failure(AddressResult, WalletErrorKind.VALIDATION_ERROR, "Phone is required")

        try:
            user = await self._find_user(phone)
        except AccountStoreError as e:
            return failure(AddressResult, WalletErrorKind.STORE_ERROR, f"Account lookup failed: {e}")

        if user is None or not user.address:
            return failure(AddressResult, WalletErrorKind.NOT_ONBOARDED, NOT_ONBOARDED_MESSAGE)
        return AddressResult(address=user.address, phone=phone)

    @wallet_operation(BalanceResult)
    async def get_balance(self, phone: str, asset: Optional[str] = None) -> BalanceResult:
        phone = normalize_phone(phone or "")
        if not phone.strip():
            return failure(BalanceResult, WalletErrorKind.VALIDATION_ERROR, "Phone is required")
        if self._unsupported_asset(asset):
            return failure(
                BalanceResult,
                WalletErrorKind.UNSUPPORTED_ASSET,
                f"Only {self.asset} is supported on {self.chain_label}"
            )

        try:
            user = await self._find_user(phone)
        except AccountStoreError as e:
            return failure(BalanceResult, WalletErrorKind.STORE_ERROR, f"Account lookup failed: {e}")
        if user is None or not user.address:
            return failure(BalanceResult, WalletErrorKind.NOT_ONBOARDED, NOT_ONBOARDED_MESSAGE)

        try:
            balance = await self.client.get_balance(user.address)
        except ChainClientError as e:
            return failure(BalanceResult, WalletErrorKind.CHAIN_QUERY_ERROR, f"Failed to get balance: {e}")

        return BalanceResult(balance=self._format(balance), asset=self.asset, address=user.address)

    @wallet_operation(OnboardResult)
    async def onboard(self, phone: str, password: str) -> OnboardResult:
        phone = normalize_phone(phone or "")
        if not phone.strip():
            return failure(OnboardResult, WalletErrorKind.VALIDATION_ERROR, "Phone number is required for onboarding")
        if not password or not password.strip():
            return failure(
                OnboardResult,
                WalletErrorKind.VALIDATION_ERROR,
                "Password is required for onboarding (used to encrypt your wallet)"
            )

        try:
            existing = await self._find_user(phone)
        except AccountStoreError as e:
            return failure(OnboardResult, WalletErrorKind.STORE_ERROR, f"Onboard failed: {e}")

        if existing is not None:
            if existing.is_password_protected:
                return OnboardResult(already_onboarded=True, address=existing.address)
            return failure(OnboardResult, WalletErrorKind.LEGACY_ACCOUNT, LEGACY_ACCOUNT_MESSAGE)

        address, secret = self.client.generate_account()
        encrypted_secret = await asyncio.to_thread(encrypt, secret, password)

        try:
            await self.store.insert_user(phone, address, encrypted_secret, created_at=int(self._clock()))
        except AccountExistsError:
            # Registered concurrently; report whatever won
            current = await self._find_user(phone)
            if current is not None and current.is_password_protected:
                return OnboardResult(already_onboarded=True, address=current.address)
            return failure(OnboardResult, WalletErrorKind.LEGACY_ACCOUNT, LEGACY_ACCOUNT_MESSAGE)
        except AccountStoreError as e:
            return failure(OnboardResult, WalletErrorKind.STORE_ERROR, f"Onboard failed: {e}")

        logger.info(f"Onboarded {phone} on {self.chain.value} with address {address}")
        return OnboardResult(address=address)

    @wallet_operation(SendResult)
    async def send(self, phone: str, password: str, params: SendParams) -> SendResult:
        phone = normalize_phone(phone or "")
        if not phone.strip():
            return failure(SendResult, WalletErrorKind.VALIDATION_ERROR, "Phone (from) is required")
        if not password or not password.strip():
            return failure(SendResult, WalletErrorKind.VALIDATION_ERROR, "Password is required to send (decrypt wallet)")

        recipient = (params.recipient or "").strip()
        if not recipient:
            return failure(SendResult, WalletErrorKind.VALIDATION_ERROR, "Recipient (to) is required")
        if self._unsupported_asset(params.asset):
            return failure(
                SendResult,
                WalletErrorKind.UNSUPPORTED_ASSET,
                f"Only {self.asset} can be sent on {self.chain_label}"
            )

        amount = parse_amount(params.amount)
        amount_base = self.client.to_base_units(amount) if amount is not None else 0
        if amount_base <= 0:
            return failure(SendResult, WalletErrorKind.INVALID_AMOUNT, "Invalid amount")

        try:
            to_address = await self._resolve_recipient(recipient)
            if to_address is None:
                return failure(
                    SendResult,
                    WalletErrorKind.RECIPIENT_NOT_FOUND,
                    f'Invalid recipient "{recipient}". Use a valid {self.chain_label} address or an onboarded phone number.'
                )
            user = await self._find_user(phone)
        except AccountStoreError as e:
            return failure(SendResult, WalletErrorKind.STORE_ERROR, f"Account lookup failed: {e}")

        if user is None or not user.address:
            return failure(
                SendResult,
                WalletErrorKind.NOT_ONBOARDED,
                "Account not found or not onboarded with password-protected wallet"
            )
        if not user.encrypted_secret:
            return failure(SendResult, WalletErrorKind.LEGACY_ACCOUNT, LEGACY_ACCOUNT_MESSAGE)

        secret = await self._unlock(user, password)
        if secret is None:
            return failure(SendResult, WalletErrorKind.WRONG_PASSWORD, WRONG_PASSWORD_MESSAGE)

        try:
            balance = await self.client.get_balance(user.address)
            fee = await self.client.current_fee()
        except ChainClientError as e:
            return failure(SendResult, WalletErrorKind.CHAIN_QUERY_ERROR, f"Failed to get balance: {e}")

        required = amount_base + fee + self.reserve
        if balance < required:
            shortfall = self._format(required - balance)
            included = "fee and minimum balance" if self.reserve else "fee"
            return failure(
                SendResult,
                WalletErrorKind.INSUFFICIENT_BALANCE,
                f"Insufficient balance. Required: {self._format(required)} {self.asset} (includes {included}), "
                f"Available: {self._format(balance)} {self.asset}. Short by {shortfall} {self.asset}",
                shortfall=shortfall
            )

        try:
            receipt = await self.client.transfer(secret, to_address, amount_base, note=self.send_note)
        except ConfirmationTimeoutError as e:
            return failure(
                SendResult,
                WalletErrorKind.CONFIRMATION_TIMEOUT,
                f"Transaction submitted but not confirmed in time: {e}"
            )
        except ChainClientError as e:
            return failure(SendResult, WalletErrorKind.TRANSACTION_FAILED, f"Transaction failed: {e}")

        logger.info(f"Sent {self._format(amount_base)} {self.asset} from {phone}: {receipt.transaction_id}")
        return SendResult(
            transaction_id=receipt.transaction_id,
            confirmed_round=receipt.confirmed_round,
            explorer_url=self.client.explorer_url(receipt.transaction_id),
            amount=str(params.amount).strip(),
            asset=self.asset,
            recipient_address=to_address
        )

    @wallet_operation(FundResult)
    async def fund(self, phone: str) -> FundResult:
        phone = normalize_phone(phone or "")
        if not phone.strip():
            return failure(FundResult, WalletErrorKind.VALIDATION_ERROR, "Phone number is required")
        if not self.client.has_admin:
            return failure(FundResult, WalletErrorKind.ADMIN_WALLET_NOT_CONFIGURED, "Admin wallet not configured on server")

        async with self.rate_limiter.lock(phone):
            remaining = self.rate_limiter.remaining_seconds(phone)
            if remaining is not None:
                return failure(
                    FundResult,
                    WalletErrorKind.RATE_LIMITED,
                    f"You can only be funded once per day. Try again in {describe_wait(remaining)}.",
                    retry_after_seconds=math.ceil(remaining)
                )

            try:
                user = await self._find_user(phone)
            except AccountStoreError as e:
                return failure(FundResult, WalletErrorKind.STORE_ERROR, f"Account lookup failed: {e}")
            if user is None or not user.address:
                return failure(
                    FundResult,
                    WalletErrorKind.NOT_ONBOARDED,
                    "User not found or not onboarded. Please onboard first."
                )

            grant = self.client.to_base_units(self.fund_amount)
            try:
                admin_balance = await self.client.get_balance(self.client.admin_address)
                fee = await self.client.current_fee()
            except ChainClientError as e:
                return failure(FundResult, WalletErrorKind.CHAIN_QUERY_ERROR, f"Fund transaction failed: {e}")

            if admin_balance < grant + fee + self.reserve:
                return failure(
                    FundResult,
                    WalletErrorKind.ADMIN_INSUFFICIENT_BALANCE,
                    f"Admin wallet has insufficient balance. Available: {self._format(admin_balance)} {self.asset}"
                )

            try:
                receipt = await self.client.transfer(
                    self.client.admin_secret, user.address, grant, note=self.fund_note
                )
            except ConfirmationTimeoutError as e:
                return failure(
                    FundResult,
                    WalletErrorKind.CONFIRMATION_TIMEOUT,
                    f"Fund transaction submitted but not confirmed in time: {e}"
                )
            except ChainClientError as e:
                return failure(FundResult, WalletErrorKind.TRANSACTION_FAILED, f"Fund transaction failed: {e}")

            self.rate_limiter.record_grant(phone)

        logger.info(f"Funded {phone} with {self.fund_amount} {self.asset}: {receipt.transaction_id}")
        return FundResult(
            transaction_id=receipt.transaction_id,
            confirmed_round=receipt.confirmed_round,
            explorer_url=self.client.explorer_url(receipt.transaction_id),
            amount=str(self.fund_amount),
            asset=self.asset
        )

    @wallet_operation(TransactionsResult)
    async def get_transactions(self, phone: str, limit: int = 5) -> TransactionsResult:
        phone = normalize_phone(phone or "")
        if not phone.strip():
            return failure(TransactionsResult, WalletErrorKind.VALIDATION_ERROR, "Phone number is required")
        if limit < 1:
            return failure(TransactionsResult, WalletErrorKind.VALIDATION_ERROR, "Limit must be at least 1")
        limit = min(limit, MAX_HISTORY_LIMIT)

        try:
            user = await self._find_user(phone)
        except AccountStoreError as e:
            return failure(TransactionsResult, WalletErrorKind.STORE_ERROR, f"Account lookup failed: {e}")
        if user is None or not user.address:
            return failure(TransactionsResult, WalletErrorKind.NOT_ONBOARDED, NOT_ONBOARDED_MESSAGE)

        try:
            entries = await self.client.list_transactions(user.address, limit)
        except ChainClientError as e:
            return failure(
                TransactionsResult,
                WalletErrorKind.CHAIN_QUERY_ERROR,
                f"Failed to fetch transactions: {e}"
            )

        entries = sorted(entries, key=lambda tx: tx.timestamp or 0, reverse=True)[:limit]
        summaries = [
            TransactionSummary(
                transaction_id=tx.transaction_id,
                type=tx.type,
                timestamp=(
                    datetime.fromtimestamp(tx.timestamp, tz=timezone.utc).isoformat()
                    if tx.timestamp is not None else None
                ),
                sender=tx.sender,
                explorer_url=self.client.explorer_url(tx.transaction_id),
                amount=self._format(tx.amount) if tx.amount is not None else None,
                receiver=tx.receiver
            )
            for tx in entries
        ]
        return TransactionsResult(address=user.address, asset=self.asset, transactions=summaries)

    @wallet_operation(ExportSecretResult)
    async def export_secret(self, phone: str, password: str) -> ExportSecretResult:
        phone = normalize_phone(phone or "")
        if not phone.strip():
            return failure(ExportSecretResult, WalletErrorKind.VALIDATION_ERROR, "Phone is required")
        if not password or not password.strip():
            return failure(ExportSecretResult, WalletErrorKind.VALIDATION_ERROR, "Password is required to export your key")

        try:
            user = await self._find_user(phone)
        except AccountStoreError as e:
            return failure(ExportSecretResult, WalletErrorKind.STORE_ERROR, f"Account lookup failed: {e}")
        if user is None or not user.is_password_protected:
            return failure(ExportSecretResult, WalletErrorKind.NOT_ONBOARDED, NOT_ONBOARDED_MESSAGE)

        secret = await self._unlock(user, password)
        if secret is None:
            return failure(ExportSecretResult, WalletErrorKind.WRONG_PASSWORD, WRONG_PASSWORD_MESSAGE)

        logger.info(f"Exported {self.chain.value} secret for {phone}")
        return ExportSecretResult(address=user.address, secret=secret)

    @wallet_operation(OnboardResult)
    async def change_password(self, phone: str, old_password: str, new_password: str) -> OnboardResult:
        phone = normalize_phone(phone or "")
        if not phone.strip():
            return failure(OnboardResult, WalletErrorKind.VALIDATION_ERROR, "Phone is required")
        if not old_password or not new_password or not new_password.strip():
            return failure(OnboardResult, WalletErrorKind.VALIDATION_ERROR, "Current and new password are required")

        try:
            user = await self._find_user(phone)
        except AccountStoreError as e:
            return failure(OnboardResult, WalletErrorKind.STORE_ERROR, f"Account lookup failed: {e}")
        if user is None or not user.is_password_protected:
            return failure(OnboardResult, WalletErrorKind.NOT_ONBOARDED, NOT_ONBOARDED_MESSAGE)

        secret = await self._unlock(user, old_password)
        if secret is None:
            return failure(OnboardResult, WalletErrorKind.WRONG_PASSWORD, WRONG_PASSWORD_MESSAGE)

        encrypted_secret = await asyncio.to_thread(encrypt, secret, new_password)
        try:
            await self.store.update_user(phone, user.address, encrypted_secret)
        except AccountStoreError as e:
            return failure(OnboardResult, WalletErrorKind.STORE_ERROR, f"Password change failed: {e}")

        logger.info(f"Rotated {self.chain.value} wallet password for {phone}")
        return OnboardResult(address=user.address)


class AlgorandWalletOperations(WalletOperations):
    chain = Chain.ALGORAND
    fund_amount = Decimal("1")
    reserve = 100_000  # 0.1 ALGO account minimum balance
    send_note = "SMS Wallet Transfer"
    fund_note = "PIGEON Fund (TestNet)"


class SolanaWalletOperations(WalletOperations):
    chain = Chain.SOLANA
    fund_amount = Decimal("0.1")
    reserve = 0


class WalletRegistry:
    """Selects the WalletOperations variant for a chain, once per request."""

    def __init__(self, operations: Dict[Chain, WalletOperations], default_chain: Chain = Chain.ALGORAND):
        if default_chain not in operations:
            raise ValueError(f"No wallet operations registered for default chain {default_chain.value}")
        self._operations = operations
        self.default_chain = default_chain

    def resolve(self, chain: Optional[Chain]) -> WalletOperations:
        return self._operations[chain or self.default_chain]

    def __contains__(self, chain: Chain) -> bool:
        return chain in self._operations

    async def aclose(self) -> None:
        for operations in self._operations.values():
            await operations.client.aclose()


def _build_store(chain: Chain) -> ChainAccountStore:
    if settings.account_store_backend == "supabase":
        from pigeon.clients.supabase_client import SupabaseAccountStore, SupabaseClient
        return SupabaseAccountStore(SupabaseClient(), chain.value)
    return InMemoryAccountStore(chain.value)


def build_wallet_registry() -> WalletRegistry:
    """Wire both chains from settings."""
    from pigeon.clients.algorand_client import AlgorandClient
    from pigeon.clients.solana_client import SolanaClient

    operations: Dict[Chain, WalletOperations] = {
        Chain.ALGORAND: AlgorandWalletOperations(
            _build_store(Chain.ALGORAND),
            AlgorandClient(admin_secret=settings.algorand_admin_private_key)
        ),
        Chain.SOLANA: SolanaWalletOperations(
            _build_store(Chain.SOLANA),
            SolanaClient(admin_secret=settings.solana_admin_private_key)
        ),
    }
    return WalletRegistry(operations, default_chain=Chain(settings.default_chain))


# Global wallet registry instance
_wallet_registry: Optional[WalletRegistry] = None


def get_wallet_registry() -> WalletRegistry:
    """
    Get the global wallet registry instance.

    Returns:
        WalletRegistry: The global registry for both chains
    """
    global _wallet_registry
    if _wallet_registry is None:
        _wallet_registry = build_wallet_registry()
    return _wallet_registry


async def close_wallet_registry() -> None:
    global _wallet_registry
    if _wallet_registry is not None:
        registry, _wallet_registry = _wallet_registry, None
        await registry.aclose()
