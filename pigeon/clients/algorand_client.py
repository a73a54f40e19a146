"""
Algorand client over the algod and indexer REST APIs.

Transactions are built and signed locally: a payment is msgpack-encoded with
canonical (sorted, zero-omitted) fields, signed with Ed25519 over the
``TX``-prefixed bytes and posted to algod as raw bytes.
"""

import base64
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
import msgpack
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from pigeon.clients.chain_client import (
    ChainClient,
    ChainClientError,
    ConfirmationTimeoutError,
    InvalidSecretError,
    TransferReceipt
)
from pigeon.config import settings
from pigeon.models.internal_models import ChainTransaction

logger = logging.getLogger(__name__)

ADDRESS_LENGTH = 58
CHECKSUM_LENGTH = 4
TX_PREFIX = b"TX"
MIN_FEE = 1000
VALIDITY_WINDOW = 1000
CONFIRMATION_ROUNDS = 10


def _sha512_256(data: bytes) -> bytes:
    digest = hashes.Hash(hashes.SHA512_256())
    digest.update(data)
    return digest.finalize()


def encode_address(public_key: bytes) -> str:
    """Public key to the 58-character base32 address with its 4-byte checksum."""
    checksum = _sha512_256(public_key)[-CHECKSUM_LENGTH:]
    return base64.b32encode(public_key + checksum).decode("ascii").rstrip("=")


def decode_address(address: str) -> bytes:
    """Address to raw public key. Raises ValueError on a malformed address."""
    if not isinstance(address, str) or len(address) != ADDRESS_LENGTH:
        raise ValueError("Algorand address must be 58 characters")
    try:
        raw = base64.b32decode(address + "=" * (-len(address) % 8))
    except ValueError as e:
        raise ValueError(f"Invalid base32 address: {e}")

    public_key, checksum = raw[:-CHECKSUM_LENGTH], raw[-CHECKSUM_LENGTH:]
    if _sha512_256(public_key)[-CHECKSUM_LENGTH:] != checksum:
        raise ValueError("Address checksum mismatch")
    return public_key


def _load_signing_key(secret: str) -> Tuple[Ed25519PrivateKey, bytes]:
    """Secret is base64 of the 32-byte seed followed by the 32-byte public key."""
    try:
        raw = base64.b64decode(secret, validate=True)
    except (ValueError, TypeError) as e:
        raise InvalidSecretError(f"Secret is not valid base64: {e}")
    if len(raw) != 64:
        raise InvalidSecretError("Secret must decode to 64 bytes")

    signing_key = Ed25519PrivateKey.from_private_bytes(raw[:32])
    public_key = signing_key.public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )
    if public_key != raw[32:]:
        raise InvalidSecretError("Secret seed does not match its public key")
    return signing_key, public_key


def encode_payment(
    sender: bytes,
    receiver: bytes,
    amount: int,
    fee: int,
    first_valid: int,
    genesis_id: str,
    genesis_hash: bytes,
    note: Optional[bytes] = None
) -> Dict[str, Any]:
    """Canonical payment fields: keys sorted, zero and empty values omitted."""
    fields = {
        "amt": amount,
        "fee": fee,
        "fv": first_valid,
        "gen": genesis_id,
        "gh": genesis_hash,
        "lv": first_valid + VALIDITY_WINDOW,
        "note": note,
        "rcv": receiver,
        "snd": sender,
        "type": "pay",
    }
    return {key: value for key, value in sorted(fields.items()) if value}


def payment_fee(params: Dict[str, Any]) -> int:
    """Flat fee for a payment given the node's suggested params."""
    return max(int(params.get("min-fee", MIN_FEE)), MIN_FEE)


def transaction_id(packed_txn: bytes) -> str:
    return base64.b32encode(_sha512_256(TX_PREFIX + packed_txn)).decode("ascii").rstrip("=")


class AlgorandClient(ChainClient):
    """algod for balances and payments, indexer for history."""

    asset = "ALGO"
    decimals = 6
    fee = MIN_FEE

    def __init__(
        self,
        algod_server: Optional[str] = None,
        algod_token: Optional[str] = None,
        indexer_server: Optional[str] = None,
        explorer_base: Optional[str] = None,
        admin_secret: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0
    ):
        super().__init__(admin_secret)
        self.algod_server = (algod_server or settings.algod_server).rstrip("/")
        self.indexer_server = (indexer_server or settings.algorand_indexer_server).rstrip("/")
        self.explorer_base = (explorer_base or settings.algorand_explorer_base).rstrip("/")
        token = settings.algod_token if algod_token is None else algod_token
        self._headers = {"X-Algo-API-Token": token} if token else {}
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    def generate_account(self) -> Tuple[str, str]:
        signing_key = Ed25519PrivateKey.generate()
        seed = signing_key.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption()
        )
        public_key = signing_key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        secret = base64.b64encode(seed + public_key).decode("ascii")
        return encode_address(public_key), secret

    def address_from_secret(self, secret: str) -> str:
        _, public_key = _load_signing_key(secret)
        return encode_address(public_key)

    def is_valid_address(self, value: str) -> bool:
        try:
            decode_address(value)
            return True
        except ValueError:
            return False

    def explorer_url(self, transaction_id: str) -> str:
        return f"{self.explorer_base}/{transaction_id}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = dict(self._headers)
        headers.update(kwargs.pop("headers", {}))
        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling Algorand node {url}: {e}")
            raise ChainClientError(f"Algorand node timeout: {e}")
        except httpx.HTTPStatusError as e:
            body = e.response.text
            logger.error(f"Algorand node error {e.response.status_code} for {url}: {body}")
            raise ChainClientError(f"Algorand node error ({e.response.status_code})")
        except httpx.HTTPError as e:
            logger.error(f"Transport error calling Algorand node {url}: {e}")
            raise ChainClientError(f"Algorand node unreachable: {e}")

    async def _algod_json(self, path: str) -> Dict[str, Any]:
        response = await self._request("GET", f"{self.algod_server}{path}")
        return response.json()

    async def get_balance(self, address: str) -> int:
        info = await self._algod_json(f"/v2/accounts/{address}")
        return int(info.get("amount", 0))

    async def current_fee(self) -> int:
        params = await self._algod_json("/v2/transactions/params")
        return payment_fee(params)

    async def transfer(
        self,
        secret: str,
        to_address: str,
        amount: int,
        note: Optional[str] = None
    ) -> TransferReceipt:
        signing_key, public_key = _load_signing_key(secret)
        try:
            receiver = decode_address(to_address)
        except ValueError as e:
            raise ChainClientError(f"Invalid receiver address: {e}")

        params = await self._algod_json("/v2/transactions/params")
        txn = encode_payment(
            sender=public_key,
            receiver=receiver,
            amount=amount,
            fee=payment_fee(params),
            first_valid=int(params["last-round"]),
            genesis_id=params["genesis-id"],
            genesis_hash=base64.b64decode(params["genesis-hash"]),
            note=note.encode("utf-8") if note else None
        )
        packed = msgpack.packb(txn, use_bin_type=True)
        signature = signing_key.sign(TX_PREFIX + packed)
        signed = msgpack.packb({"sig": signature, "txn": txn}, use_bin_type=True)
        txid = transaction_id(packed)

        await self._request(
            "POST",
            f"{self.algod_server}/v2/transactions",
            content=signed,
            headers={"Content-Type": "application/x-binary"}
        )
        logger.info(f"Submitted Algorand payment {txid}")

        confirmed_round = await self.wait_for_confirmation(txid)
        return TransferReceipt(transaction_id=txid, confirmed_round=confirmed_round)

    async def wait_for_confirmation(self, txid: str, max_rounds: int = CONFIRMATION_ROUNDS) -> int:
        """Block until ``txid`` is confirmed or ``max_rounds`` rounds pass."""
        status = await self._algod_json("/v2/status")
        start_round = int(status["last-round"]) + 1
        current_round = start_round

        while current_round < start_round + max_rounds:
            pending = await self._algod_json(f"/v2/transactions/pending/{txid}")
            confirmed = pending.get("confirmed-round")
            if confirmed:
                logger.info(f"Algorand transaction {txid} confirmed in round {confirmed}")
                return int(confirmed)
            pool_error = pending.get("pool-error")
            if pool_error:
                raise ChainClientError(f"Transaction rejected: {pool_error}")

            await self._algod_json(f"/v2/status/wait-for-block-after/{current_round}")
            current_round += 1

        raise ConfirmationTimeoutError(
            f"Transaction {txid} not confirmed after {max_rounds} rounds"
        )

    async def list_transactions(self, address: str, limit: int) -> List[ChainTransaction]:
        response = await self._request(
            "GET",
            f"{self.indexer_server}/v2/accounts/{address}/transactions",
            params={"limit": limit}
        )
        entries = response.json().get("transactions") or []

        transactions = []
        for entry in entries:
            transfer = entry.get("payment-transaction") or entry.get("asset-transfer-transaction") or {}
            round_time = entry.get("round-time")
            transactions.append(ChainTransaction(
                transaction_id=entry["id"],
                type=entry.get("tx-type", "unknown"),
                timestamp=int(round_time) if round_time is not None else None,
                sender=entry.get("sender", ""),
                receiver=transfer.get("receiver"),
                amount=transfer.get("amount")
            ))

        transactions.sort(key=lambda tx: tx.timestamp or 0, reverse=True)
        return transactions[:limit]

    async def aclose(self) -> None:
        await self._http.aclose()
