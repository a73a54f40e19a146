"""
SMS gateway webhooks: httpSMS CloudEvents and the ESP32/SIM800L gateway.
"""

from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from pigeon.config import settings
from pigeon.models.api_models import GatewaySmsPayload, HttpSmsEvent
from pigeon.models.internal_models import InboundSms
from pigeon.observability import record_webhook_event, trace_function
from pigeon.services.replies import SECURITY_WARNING
from pigeon.services.sms_dispatcher import (
    RECEIVED_EVENT_TYPE,
    InvalidEventError,
    SmsDispatcher,
    get_sms_dispatcher
)
from pigeon.utils.webhook_signature import validate_webhook_signature

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["sms-webhook"])


def get_webhook_signing_key() -> Optional[str]:
    return settings.httpsms_webhook_signing_key


def get_correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or request.headers.get("X-Request-ID", "unknown")


def error_response(status_code: int, error: str, correlation_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "correlation_id": correlation_id}
    )


async def read_json_body(request: Request) -> Optional[dict]:
    """Parse the body as JSON whatever the declared content type."""
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@router.post("/sms-webhook")
@trace_function("httpsms_webhook")
async def handle_httpsms_webhook(
    request: Request,
    dispatcher: SmsDispatcher = Depends(get_sms_dispatcher),
    signing_key: Optional[str] = Depends(get_webhook_signing_key)
) -> JSONResponse:
    """
    Handle an httpSMS CloudEvent.

    Only ``message.phone.received`` events are processed; other event types and
    redeliveries of an already processed id are acknowledged with 200.
    """
    correlation_id = get_correlation_id(request)

    try:
        body = await read_json_body(request)
        if body is None or not body.get("type") or not body.get("data"):
            record_webhook_event("httpsms", "rejected")
            return error_response(400, 'Invalid payload: missing "type" or "data" field', correlation_id)

        if not validate_webhook_signature(request.headers.get("Authorization"), signing_key):
            record_webhook_event("httpsms", "unauthorized")
            return error_response(401, "Invalid webhook signature", correlation_id)

        try:
            event = HttpSmsEvent.model_validate(body)
        except ValidationError as e:
            record_webhook_event("httpsms", "rejected")
            logger.warning("Malformed httpSMS event", errors=e.error_count(), correlation_id=correlation_id)
            return error_response(400, "Invalid payload: malformed CloudEvent", correlation_id)

        logger.info("httpSMS event received", event_type=event.type, event_id=event.id, correlation_id=correlation_id)

        inbound = InboundSms(
            event_id=event.id,
            event_type=event.type,
            sender=event.data.contact or "",
            content=event.data.content or "",
            owner=event.data.owner,
            source="httpsms"
        )

        try:
            outcome = await dispatcher.handle_event(inbound)
        except InvalidEventError:
            return error_response(400, "Missing data.contact or data.content in received event", correlation_id)

        if outcome.status != "processed":
            return JSONResponse(status_code=200, content={"success": True, "message": outcome.message})

        logger.info(
            "httpSMS message processed",
            sender=inbound.sender,
            sms_sent=outcome.sms_sent,
            security_warning_queued=outcome.security_warning_queued,
            correlation_id=correlation_id
        )

        return JSONResponse(
            status_code=200,
            content={
                "success": True,
                "message": outcome.message,
                "data": {
                    "from": inbound.sender,
                    "owner": inbound.owner,
                    "intent_reply": outcome.reply,
                    "sms_sent": outcome.sms_sent,
                    "sms_send_error": outcome.sms_send_error,
                    "security_warning_queued": outcome.security_warning_queued
                }
            }
        )

    except Exception as e:
        logger.error("httpSMS webhook error", error=str(e), correlation_id=correlation_id)
        return error_response(500, "Internal server error", correlation_id)


@router.post("/esp32-sms-webhook")
@trace_function("esp32_sms_webhook")
async def handle_esp32_webhook(
    request: Request,
    dispatcher: SmsDispatcher = Depends(get_sms_dispatcher)
) -> JSONResponse:
    """
    Handle an SMS forwarded by an ESP32/SIM800L gateway.

    The device sends the reply itself, so the reply text (and the security
    warning when a password was consumed) is returned in the response.
    """
    correlation_id = get_correlation_id(request)

    try:
        body = await read_json_body(request)
        payload = GatewaySmsPayload.model_validate(body or {})
        if not payload.sender or not payload.message:
            record_webhook_event("esp32", "rejected")
            return error_response(400, 'Missing "from" or "message" in ESP32 payload', correlation_id)

        device_id = payload.device_id or "unknown"
        logger.info("ESP32 SMS received", sender=payload.sender, device_id=device_id, correlation_id=correlation_id)

        inbound = InboundSms(
            event_id=f"esp32-{device_id}-{payload.message_id}" if payload.message_id else None,
            event_type=RECEIVED_EVENT_TYPE,
            sender=payload.sender,
            content=payload.message,
            owner="ESP32-SIM800L",
            source="esp32"
        )
        outcome = await dispatcher.handle_event(inbound, deliver=False)

        if outcome.status == "duplicate":
            return JSONResponse(status_code=200, content={"success": True, "message": outcome.message})

        data = {
            "from": payload.sender,
            "reply": outcome.reply,
            "containedPassword": outcome.contained_password,
            "deviceId": device_id,
            "send_reply": True
        }
        if outcome.contained_password:
            data["security_warning"] = SECURITY_WARNING

        return JSONResponse(
            status_code=200,
            content={"success": True, "message": outcome.message, "data": data}
        )

    except ValidationError:
        return error_response(400, "Invalid ESP32 payload", correlation_id)
    except Exception as e:
        logger.error("ESP32 webhook error", error=str(e), correlation_id=correlation_id)
        return error_response(500, "Internal server error", correlation_id)


@router.get("/webhook-health")
async def webhook_health() -> dict:
    """Report which credentials are configured. Never returns secret values."""
    return {
        "success": True,
        "message": "SMS webhook service is running",
        "timestamp": datetime.utcnow().isoformat(),
        "endpoints": {
            "httpsms": "POST /api/sms-webhook (httpSMS CloudEvents)",
            "esp32": "POST /api/esp32-sms-webhook (ESP32/SIM800L)",
            "health": "GET /api/webhook-health"
        },
        "config": {
            "httpsms_api_key": bool(settings.httpsms_api_key),
            "httpsms_owner_phone": bool(settings.httpsms_owner_phone),
            "webhook_signing_key": bool(settings.httpsms_webhook_signing_key),
            "gemini_api_key": bool(settings.gemini_api_key),
            "algorand_admin_key": bool(settings.algorand_admin_private_key),
            "solana_admin_key": bool(settings.solana_admin_private_key),
            "supabase": bool(settings.supabase_url and settings.supabase_key)
        }
    }
