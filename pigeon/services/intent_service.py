"""
Intent classification for inbound SMS.

Free text goes to an LLM with a fixed instruction prompt; the reply is parsed
leniently. Any transport failure, malformed JSON or out-of-vocabulary intent
becomes ``unknown`` so a bad classification can never break the pipeline.
"""

import json
import logging
import re
from typing import Any, Optional

from pigeon.clients.gemini_client import ClassifierError, GeminiClient
from pigeon.models.internal_models import Chain, IntentParams, IntentResult, IntentType

logger = logging.getLogger(__name__)


INTENT_PROMPT = """You classify SMS commands sent to a crypto wallet that works on Algorand (ALGO) and Solana (SOL).
Return a JSON object with:
- "intent": one of "send" | "get_balance" | "get_txn" | "onboard" | "get_address" | "fund" | "get_pvt_key" | "unknown"
  - "send": transfer crypto to someone (e.g. "send 30 ALGO to 9912345678 password mypass123", "send 0.5 SOL to 9912345678")
  - "get_balance": check a balance (e.g. "balance", "how much SOL do I have")
  - "get_txn": recent transactions or the status of one (e.g. "last transactions", "txn status")
  - "onboard": create a wallet / sign up / register (e.g. "create wallet password mypass123", "register on solana")
  - "get_address": show the wallet address (e.g. "my address", "sol address")
  - "fund": get free testnet tokens (e.g. "fund me", "top up my wallet", "give me SOL")
  - "get_pvt_key": export the private key or secret (e.g. "private key", "export key", "show my secret key")
  - "unknown": unclear or unrelated
- "params": object with the fields present in the message:
  - amount (string number), asset ("ALGO" or "SOL"), to (recipient address or phone number)
  - password (the wallet password, if the user typed one)
  - txnId (a specific transaction id, for "get_txn")
  - chain ("algorand" or "solana") when the user names a network without an asset
  - omit fields that are not present

The "password" field matters for "send", "onboard" and "get_pvt_key". Extract it from phrases like
"password mypass", "pass mypass", "pw mypass", "pin 1234".

Reply with ONLY valid JSON, no markdown. Examples:
{"intent":"onboard","params":{"password":"mypass123"}}
{"intent":"send","params":{"amount":"5","asset":"ALGO","to":"9912345678","password":"mypass123"}}
{"intent":"get_balance","params":{"asset":"SOL"}}
{"intent":"fund","params":{}}"""

CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)

ASSET_CHAINS = {
    "ALGO": Chain.ALGORAND,
    "ALGORAND": Chain.ALGORAND,
    "SOL": Chain.SOLANA,
    "SOLANA": Chain.SOLANA,
}


def strip_code_fence(raw: str) -> str:
    match = CODE_FENCE_RE.search(raw)
    return match.group(1).strip() if match else raw.strip()


def _string_field(data: dict, *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def infer_chain(explicit: Optional[str], asset: Optional[str]) -> Optional[Chain]:
    """An explicit chain wins, then the asset symbol; otherwise undecided."""
    if explicit:
        chain = ASSET_CHAINS.get(explicit.strip().upper())
        if chain is not None:
            return chain
    if asset:
        return ASSET_CHAINS.get(asset.strip().upper())
    return None


def parse_params(raw_params: Any) -> IntentParams:
    if not isinstance(raw_params, dict):
        return IntentParams()

    asset = _string_field(raw_params, "asset")
    return IntentParams(
        amount=_string_field(raw_params, "amount"),
        asset=asset.upper() if asset else None,
        recipient=_string_field(raw_params, "to", "recipient"),
        transaction_id=_string_field(raw_params, "txnId", "transaction_id"),
        password=_string_field(raw_params, "password"),
        chain=infer_chain(_string_field(raw_params, "chain"), asset)
    )


def parse_classifier_output(raw: str, message: str) -> IntentResult:
    """Turn raw classifier text into an IntentResult, degrading to unknown."""
    try:
        parsed = json.loads(strip_code_fence(raw))
    except (json.JSONDecodeError, TypeError):
        logger.warning("Classifier returned non-JSON output")
        return IntentResult(intent=IntentType.UNKNOWN, params=IntentParams(), raw_message=message)

    if not isinstance(parsed, dict):
        return IntentResult(intent=IntentType.UNKNOWN, params=IntentParams(), raw_message=message)

    intent_value = str(parsed.get("intent", "unknown")).strip().lower()
    try:
        intent = IntentType(intent_value)
    except ValueError:
        logger.warning(f"Classifier returned unsupported intent {intent_value!r}")
        return IntentResult(intent=IntentType.UNKNOWN, params=IntentParams(), raw_message=message)

    if intent is IntentType.UNKNOWN:
        return IntentResult(intent=intent, params=IntentParams(), raw_message=message)
    return IntentResult(intent=intent, params=parse_params(parsed.get("params")), raw_message=message)


class IntentClassifier:
    """Classifies SMS text into an IntentResult via the Gemini API."""

    def __init__(self, client: Optional[GeminiClient] = None):
        self.client = client or GeminiClient()

    @property
    def is_configured(self) -> bool:
        return self.client.is_configured

    async def classify(self, message: str) -> IntentResult:
        prompt = f"{INTENT_PROMPT}\n\nUser message: {message}"
        try:
            raw = await self.client.generate(prompt)
        except ClassifierError as e:
            logger.error(f"Intent classification failed: {e}")
            return IntentResult(intent=IntentType.UNKNOWN, params=IntentParams(), raw_message=message)

        result = parse_classifier_output(raw, message)
        logger.info(f"Intent classified: {result.intent.value} {result.params.to_public_dict()}")
        return result


# Global intent classifier instance
_intent_classifier: Optional[IntentClassifier] = None


def get_intent_classifier() -> IntentClassifier:
    """Get the global intent classifier instance."""
    global _intent_classifier
    if _intent_classifier is None:
        _intent_classifier = IntentClassifier()
    return _intent_classifier


async def close_intent_classifier() -> None:
    global _intent_classifier
    if _intent_classifier is not None:
        classifier, _intent_classifier = _intent_classifier, None
        await classifier.client.aclose()
