"""
Wallet application API: per-operation endpoints and the direct ``/api/sms`` command API.
"""

import time
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from pigeon.models.api_models import (
    BalanceRequest,
    ChangePasswordRequest,
    ErrorResponse,
    PasswordRequest,
    PhoneRequest,
    SendRequest,
    SmsCommandRequest,
    TransactionsRequest
)
from pigeon.models.internal_models import Chain, IntentType, SendParams
from pigeon.models.results import OperationResult, WalletErrorKind
from pigeon.observability import trace_function
from pigeon.services.intent_service import IntentClassifier, get_intent_classifier
from pigeon.services.wallet_service import WalletRegistry, get_wallet_registry

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["wallet"])


ERROR_STATUS_CODES = {
    WalletErrorKind.VALIDATION_ERROR: 400,
    WalletErrorKind.INVALID_AMOUNT: 400,
    WalletErrorKind.UNSUPPORTED_ASSET: 400,
    WalletErrorKind.INSUFFICIENT_BALANCE: 400,
    WalletErrorKind.WRONG_PASSWORD: 401,
    WalletErrorKind.NOT_ONBOARDED: 404,
    WalletErrorKind.RECIPIENT_NOT_FOUND: 404,
    WalletErrorKind.LEGACY_ACCOUNT: 409,
    WalletErrorKind.RATE_LIMITED: 429,
    WalletErrorKind.CHAIN_QUERY_ERROR: 502,
    WalletErrorKind.TRANSACTION_FAILED: 502,
    WalletErrorKind.STORE_ERROR: 502,
    WalletErrorKind.ADMIN_INSUFFICIENT_BALANCE: 503,
    WalletErrorKind.ADMIN_WALLET_NOT_CONFIGURED: 503,
    WalletErrorKind.CONFIRMATION_TIMEOUT: 504,
    WalletErrorKind.INTERNAL_ERROR: 500,
}


def status_for(kind: Optional[WalletErrorKind]) -> int:
    return ERROR_STATUS_CODES.get(kind, 500)


def get_correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or request.headers.get("X-Request-ID", "unknown")


def create_error_response(
    error: str,
    correlation_id: str,
    status_code: int = 500,
    error_kind: Optional[WalletErrorKind] = None,
    **extra
) -> JSONResponse:
    """Create standardized error response."""
    error_response = ErrorResponse(
        error=error,
        error_kind=error_kind.value if error_kind else None,
        correlation_id=correlation_id
    )
    content = error_response.model_dump(exclude_none=True)
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def operation_response(result: OperationResult, correlation_id: str, operation: str, chain: Chain) -> JSONResponse:
    """Map an operation result to 200 or its error status."""
    if result.success:
        return JSONResponse(status_code=200, content=result.to_dict())

    logger.warning(
        "Wallet operation failed",
        operation=operation,
        chain=chain.value,
        error_kind=result.error_kind.value if result.error_kind else None,
        correlation_id=correlation_id
    )
    body = {key: value for key, value in result.to_dict().items() if key not in ("success", "error", "error_kind")}
    return create_error_response(
        result.error or "Unknown error",
        correlation_id,
        status_code=status_for(result.error_kind),
        error_kind=result.error_kind,
        **body
    )


@router.post("/wallet/{chain}/address")
@trace_function("wallet_address_endpoint")
async def wallet_address(
    chain: Chain,
    request: PhoneRequest,
    http_request: Request,
    wallets: WalletRegistry = Depends(get_wallet_registry)
) -> JSONResponse:
    result = await wallets.resolve(chain).get_address(request.phone)
    return operation_response(result, get_correlation_id(http_request), "address", chain)


@router.post("/wallet/{chain}/balance")
@trace_function("wallet_balance_endpoint")
async def wallet_balance(
    chain: Chain,
    request: BalanceRequest,
    http_request: Request,
    wallets: WalletRegistry = Depends(get_wallet_registry)
) -> JSONResponse:
    result = await wallets.resolve(chain).get_balance(request.phone, asset=request.asset)
    return operation_response(result, get_correlation_id(http_request), "balance", chain)


@router.post("/wallet/{chain}/onboard")
@trace_function("wallet_onboard_endpoint")
async def wallet_onboard(
    chain: Chain,
    request: PasswordRequest,
    http_request: Request,
    wallets: WalletRegistry = Depends(get_wallet_registry)
) -> JSONResponse:
    """Create a wallet for the phone, encrypted under the given password."""
    result = await wallets.resolve(chain).onboard(request.phone, request.password)
    return operation_response(result, get_correlation_id(http_request), "onboard", chain)


@router.post("/wallet/{chain}/send")
@trace_function("wallet_send_endpoint")
async def wallet_send(
    chain: Chain,
    request: SendRequest,
    http_request: Request,
    wallets: WalletRegistry = Depends(get_wallet_registry)
) -> JSONResponse:
    """Send native funds to an address or an onboarded phone number."""
    correlation_id = get_correlation_id(http_request)
    start_time = time.time()

    result = await wallets.resolve(chain).send(
        request.phone,
        request.password,
        SendParams(amount=request.amount, recipient=request.recipient, asset=request.asset)
    )

    logger.info(
        "Send request completed",
        chain=chain.value,
        success=result.success,
        processing_time=time.time() - start_time,
        correlation_id=correlation_id
    )
    return operation_response(result, correlation_id, "send", chain)


@router.post("/wallet/{chain}/fund")
@trace_function("wallet_fund_endpoint")
async def wallet_fund(
    chain: Chain,
    request: PhoneRequest,
    http_request: Request,
    wallets: WalletRegistry = Depends(get_wallet_registry)
) -> JSONResponse:
    result = await wallets.resolve(chain).fund(request.phone)
    response = operation_response(result, get_correlation_id(http_request), "fund", chain)
    if result.retry_after_seconds is not None:
        response.headers["Retry-After"] = str(result.retry_after_seconds)
    return response


@router.post("/wallet/{chain}/transactions")
@trace_function("wallet_transactions_endpoint")
async def wallet_transactions(
    chain: Chain,
    request: TransactionsRequest,
    http_request: Request,
    wallets: WalletRegistry = Depends(get_wallet_registry)
) -> JSONResponse:
    result = await wallets.resolve(chain).get_transactions(request.phone, limit=request.limit)
    return operation_response(result, get_correlation_id(http_request), "transactions", chain)


@router.post("/wallet/{chain}/export")
@trace_function("wallet_export_endpoint")
async def wallet_export(
    chain: Chain,
    request: PasswordRequest,
    http_request: Request,
    wallets: WalletRegistry = Depends(get_wallet_registry)
) -> JSONResponse:
    result = await wallets.resolve(chain).export_secret(request.phone, request.password)
    return operation_response(result, get_correlation_id(http_request), "export", chain)


@router.post("/wallet/{chain}/change-password")
@trace_function("wallet_change_password_endpoint")
async def wallet_change_password(
    chain: Chain,
    request: ChangePasswordRequest,
    http_request: Request,
    wallets: WalletRegistry = Depends(get_wallet_registry)
) -> JSONResponse:
    result = await wallets.resolve(chain).change_password(request.phone, request.password, request.new_password)
    return operation_response(result, get_correlation_id(http_request), "change-password", chain)


PASSWORD_INTENTS = {IntentType.SEND, IntentType.ONBOARD, IntentType.EXPORT_SECRET}
RESULT_KEYS = {
    IntentType.ONBOARD: "onboarding",
    IntentType.SEND: "send",
    IntentType.GET_BALANCE: "balance",
    IntentType.GET_TRANSACTIONS: "transactions",
    IntentType.GET_ADDRESS: "address",
    IntentType.FUND: "fund",
    IntentType.EXPORT_SECRET: "export",
}


@router.post("/sms")
@trace_function("sms_command_endpoint")
async def sms_command(
    request: SmsCommandRequest,
    http_request: Request,
    classifier: IntentClassifier = Depends(get_intent_classifier),
    wallets: WalletRegistry = Depends(get_wallet_registry)
) -> JSONResponse:
    """
    Classify a message and run its wallet operation in one request.

    Password-protected intents take the password from the body (or the
    message itself); there is no two-step session on this API. Neither the
    message nor the password is echoed back.
    """
    correlation_id = get_correlation_id(http_request)

    if not request.message:
        return create_error_response(
            "Missing or invalid 'message' in body. Expected JSON: { from, message }",
            correlation_id,
            status_code=400
        )
    if not classifier.is_configured:
        return create_error_response("GEMINI_API_KEY is not configured", correlation_id, status_code=500)

    intent = await classifier.classify(request.message)
    payload = {
        "ok": True,
        "from": request.sender,
        "intent": intent.intent.value,
        "params": intent.params.to_public_dict()
    }

    if intent.intent is IntentType.UNKNOWN:
        return JSONResponse(status_code=200, content=payload)

    if not request.sender:
        return create_error_response(
            f"Intent '{intent.intent.value}' requires 'from' (phone number) in the request body",
            correlation_id,
            status_code=400
        )

    password = request.password or intent.params.password
    if intent.intent in PASSWORD_INTENTS and not password:
        return create_error_response(
            f"Intent '{intent.intent.value}' requires 'password' in the request body",
            correlation_id,
            status_code=400
        )

    wallet = wallets.resolve(intent.params.chain)
    params = intent.params

    if intent.intent is IntentType.ONBOARD:
        result = await wallet.onboard(request.sender, password)
    elif intent.intent is IntentType.SEND:
        result = await wallet.send(
            request.sender,
            password,
            SendParams(amount=params.amount or "", recipient=params.recipient or "", asset=params.asset)
        )
    elif intent.intent is IntentType.GET_BALANCE:
        result = await wallet.get_balance(request.sender, asset=params.asset)
    elif intent.intent is IntentType.GET_TRANSACTIONS:
        result = await wallet.get_transactions(request.sender)
    elif intent.intent is IntentType.GET_ADDRESS:
        result = await wallet.get_address(request.sender)
    elif intent.intent is IntentType.FUND:
        result = await wallet.fund(request.sender)
    else:
        result = await wallet.export_secret(request.sender, password)

    payload["chain"] = wallet.chain.value
    payload[RESULT_KEYS[intent.intent]] = result.to_dict()

    if not result.success:
        payload.update({"ok": False, "error": result.error})
        return JSONResponse(status_code=status_for(result.error_kind), content=payload)
    return JSONResponse(status_code=200, content=payload)
