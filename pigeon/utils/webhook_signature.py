"""Validation of the bearer token httpSMS attaches to webhook calls."""

import logging
from typing import Optional

import jwt

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def validate_webhook_signature(auth_header: Optional[str], signing_key: Optional[str]) -> bool:
    """
    Check the HS256 JWT in an ``Authorization: Bearer ...`` header.

    The signature covers ``base64url(header).base64url(payload)``; an ``exp``
    claim, when present, must not have passed. With no signing key configured
    validation is skipped and every request passes (development mode).

    Args:
        auth_header: Raw Authorization header value
        signing_key: Shared secret configured in the httpSMS dashboard

    Returns:
        True if the request may be processed
    """
    if not signing_key:
        return True

    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        logger.warning("Webhook missing Authorization Bearer token")
        return False

    token = auth_header[len(BEARER_PREFIX):].strip()
    try:
        jwt.decode(
            token,
            signing_key,
            algorithms=["HS256"],
            options={"verify_aud": False, "verify_iss": False},
        )
        return True
    except jwt.ExpiredSignatureError:
        logger.warning("Webhook token expired")
        return False
    except jwt.InvalidTokenError as e:
        logger.warning(f"Webhook token rejected: {type(e).__name__}")
        return False
