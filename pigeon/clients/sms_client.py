"""Outbound SMS through the httpSMS send API."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from pigeon.config import settings

logger = logging.getLogger(__name__)


@dataclass
class NotifyResult:
    success: bool
    error: Optional[str] = None


class HttpSmsNotifier:
    """
    Sends replies from the configured owner phone.

    ``send`` never raises: configuration gaps and delivery failures come back
    as a failed NotifyResult so the caller can report them.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        owner_phone: Optional[str] = None,
        api_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0
    ):
        self.api_key = api_key if api_key is not None else settings.httpsms_api_key
        self.owner_phone = owner_phone if owner_phone is not None else settings.httpsms_owner_phone
        self.api_url = api_url or settings.httpsms_api_url
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.owner_phone)

    async def send(self, to: str, content: str) -> NotifyResult:
        if not self.is_configured:
            logger.warning("httpSMS API key or owner phone not configured, skipping SMS reply")
            return NotifyResult(success=False, error="HTTPSMS_API_KEY or HTTPSMS_OWNER_PHONE not set")

        try:
            response = await self._http.post(
                self.api_url,
                headers={"x-api-key": self.api_key},
                json={"content": content, "from": self.owner_phone, "to": to}
            )
        except httpx.HTTPError as e:
            logger.error(f"httpSMS send error to {to}: {e}")
            return NotifyResult(success=False, error=str(e) or e.__class__.__name__)

        if response.status_code >= 400:
            logger.error(f"httpSMS send failed ({response.status_code}): {response.text}")
            return NotifyResult(success=False, error=f"httpSMS API {response.status_code}: {response.text}")

        logger.info(f"httpSMS reply sent to {to}")
        return NotifyResult(success=True)

    async def aclose(self) -> None:
        await self._http.aclose()
