"""
Solana client over JSON-RPC.

System-program transfers are assembled as legacy transactions and signed
locally with Ed25519; only the serialized bytes go to the RPC node.
"""

import asyncio
import base64
import logging
import struct
from typing import Any, Dict, List, Optional, Tuple

import base58
import httpx
from cryptography.hazmat.primitives import serialization
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

SYSTEM_PROGRAM_ID = bytes(32)
SYSTEM_TRANSFER_INSTRUCTION = 2
SIGNATURE_FEE = 5000
CONFIRMATION_POLLS = 30


def encode_compact_u16(value: int) -> bytes:
    """Solana's variable-length ``shortvec`` length prefix."""
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def build_transfer_message(sender: bytes, receiver: bytes, lamports: int, recent_blockhash: bytes) -> bytes:
    """Legacy message with one system transfer: [sender, receiver, system program]."""
    # 1 required signature, 0 read-only signed, 1 read-only unsigned (the program)
    header = bytes([1, 0, 1])
    account_keys = encode_compact_u16(3) + sender + receiver + SYSTEM_PROGRAM_ID
    data = struct.pack("<IQ", SYSTEM_TRANSFER_INSTRUCTION, lamports)
    instruction = (
        bytes([2])
        + encode_compact_u16(2) + bytes([0, 1])
        + encode_compact_u16(len(data)) + data
    )
    return header + account_keys + recent_blockhash + encode_compact_u16(1) + instruction


def _load_keypair(secret: str) -> Tuple[Ed25519PrivateKey, bytes]:
    """Secret is base58 of the 64-byte keypair (seed followed by public key)."""
    try:
        raw = base58.b58decode(secret)
    except (ValueError, TypeError) as e:
        raise InvalidSecretError(f"Secret is not valid base58: {e}")
    if len(raw) != 64:
        raise InvalidSecretError("Secret must decode to 64 bytes")

    signing_key = Ed25519PrivateKey.from_private_bytes(raw[:32])
    public_key = signing_key.public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )
    if public_key != raw[32:]:
        raise InvalidSecretError("Secret seed does not match its public key")
    return signing_key, public_key


def cluster_param(rpc_url: str) -> str:
    if "testnet" in rpc_url:
        return "?cluster=testnet"
    if "devnet" in rpc_url:
        return "?cluster=devnet"
    return ""


class SolanaRpcError(ChainClientError):
    """JSON-RPC error object returned by the node."""
    pass


class SolanaClient(ChainClient):
    """Balances, transfers and history through a Solana RPC endpoint."""

    asset = "SOL"
    decimals = 9
    fee = SIGNATURE_FEE

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        explorer_base: Optional[str] = None,
        admin_secret: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = 1.0,
        timeout: float = 15.0
    ):
        super().__init__(admin_secret)
        self.rpc_url = rpc_url or settings.solana_rpc_url
        self.explorer_base = (explorer_base or settings.solana_explorer_base).rstrip("/")
        self.poll_interval = poll_interval
        self._cluster = cluster_param(self.rpc_url)
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

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
        secret = base58.b58encode(seed + public_key).decode("ascii")
        return base58.b58encode(public_key).decode("ascii"), secret

    def address_from_secret(self, secret: str) -> str:
        _, public_key = _load_keypair(secret)
        return base58.b58encode(public_key).decode("ascii")

    def is_valid_address(self, value: str) -> bool:
        # Length check only; off-curve program addresses also decode to 32 bytes
        if not value or len(value) > 44:
            return False
        try:
            return len(base58.b58decode(value)) == 32
        except ValueError:
            return False

    def explorer_url(self, transaction_id: str) -> str:
        return f"{self.explorer_base}/{transaction_id}{self._cluster}"

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            response = await self._http.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling Solana RPC {method}: {e}")
            raise ChainClientError(f"Solana RPC timeout: {e}")
        except httpx.HTTPStatusError as e:
            logger.error(f"Solana RPC {method} returned {e.response.status_code}: {e.response.text}")
            raise ChainClientError(f"Solana RPC error ({e.response.status_code})")
        except httpx.HTTPError as e:
            logger.error(f"Transport error calling Solana RPC {method}: {e}")
            raise ChainClientError(f"Solana RPC unreachable: {e}")

        if body.get("error"):
            error = body["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            logger.error(f"Solana RPC {method} failed: {message}")
            raise SolanaRpcError(message)
        return body.get("result")

    async def get_balance(self, address: str) -> int:
        result = await self._rpc("getBalance", [address, {"commitment": "confirmed"}])
        return int(result["value"])

    async def transfer(
        self,
        secret: str,
        to_address: str,
        amount: int,
        note: Optional[str] = None
    ) -> TransferReceipt:
        signing_key, public_key = _load_keypair(secret)
        if not self.is_valid_address(to_address):
            raise ChainClientError(f"Invalid receiver address: {to_address}")
        receiver = base58.b58decode(to_address)
        if receiver == public_key:
            raise ChainClientError("Cannot transfer to the sending account")

        latest = await self._rpc("getLatestBlockhash", [{"commitment": "confirmed"}])
        blockhash = base58.b58decode(latest["value"]["blockhash"])

        message = build_transfer_message(public_key, receiver, amount, blockhash)
        signature = signing_key.sign(message)
        wire = encode_compact_u16(1) + signature + message

        txid = await self._rpc(
            "sendTransaction",
            [
                base64.b64encode(wire).decode("ascii"),
                {"encoding": "base64", "preflightCommitment": "confirmed"}
            ]
        )
        logger.info(f"Submitted Solana transfer {txid}")

        slot = await self.wait_for_confirmation(txid)
        return TransferReceipt(transaction_id=txid, confirmed_round=slot)

    async def wait_for_confirmation(self, signature: str, max_polls: int = CONFIRMATION_POLLS) -> Optional[int]:
        """Poll signature status until confirmed. Returns the slot."""
        for _ in range(max_polls):
            result = await self._rpc("getSignatureStatuses", [[signature]])
            status = (result or {}).get("value", [None])[0]
            if status:
                if status.get("err"):
                    raise ChainClientError(f"Transaction failed: {status['err']}")
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    logger.info(f"Solana transaction {signature} confirmed in slot {status.get('slot')}")
                    return status.get("slot")
            await asyncio.sleep(self.poll_interval)

        raise ConfirmationTimeoutError(
            f"Transaction {signature} not confirmed after {max_polls} checks"
        )

    async def list_transactions(self, address: str, limit: int) -> List[ChainTransaction]:
        signatures = await self._rpc("getSignaturesForAddress", [address, {"limit": limit}]) or []

        transactions = []
        for entry in signatures[:limit]:
            parsed = await self._rpc(
                "getTransaction",
                [
                    entry["signature"],
                    {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0, "commitment": "confirmed"}
                ]
            )
            transactions.append(self._summarize(entry, parsed))

        # getSignaturesForAddress already returns newest first
        return transactions

    @staticmethod
    def _summarize(entry: Dict[str, Any], parsed: Optional[Dict[str, Any]]) -> ChainTransaction:
        tx_type = "unknown"
        sender = ""
        receiver = None
        amount = None

        if parsed:
            message = parsed.get("transaction", {}).get("message", {})
            for instruction in message.get("instructions", []):
                info = instruction.get("parsed")
                if instruction.get("program") == "system" and isinstance(info, dict) and info.get("type") == "transfer":
                    tx_type = "transfer"
                    sender = info["info"].get("source", "")
                    receiver = info["info"].get("destination")
                    amount = int(info["info"].get("lamports", 0))

            if not sender:
                keys = message.get("accountKeys") or []
                if keys:
                    first = keys[0]
                    sender = first.get("pubkey", "") if isinstance(first, dict) else str(first)

        return ChainTransaction(
            transaction_id=entry["signature"],
            type=tx_type,
            timestamp=entry.get("blockTime"),
            sender=sender,
            receiver=receiver,
            amount=amount
        )

    async def aclose(self) -> None:
        await self._http.aclose()
