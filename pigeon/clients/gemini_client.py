"""Gemini generateContent REST client used by the intent classifier."""

import logging
from typing import Optional

import httpx

from pigeon.config import settings

logger = logging.getLogger(__name__)


class ClassifierError(Exception):
    """Raised when the classifier service cannot produce a response."""
    pass


class GeminiClient:
    """Minimal text-in, text-out wrapper around ``models/{model}:generateContent``."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.api_url = (api_url or settings.gemini_api_url).rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=timeout or settings.classifier_timeout)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def generate(self, prompt: str) -> str:
        """
        Send ``prompt`` and return the concatenated text of the first candidate.

        Raises:
            ClassifierError: On missing key, transport failure or an empty response
        """
        if not self.api_key:
            raise ClassifierError("GEMINI_API_KEY not configured")

        url = f"{self.api_url}/models/{self.model}:generateContent"
        payload = {"contents": [{"parts": [{"text": prompt}]}]}

        try:
            response = await self._http.post(url, params={"key": self.api_key}, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling Gemini: {e}")
            raise ClassifierError(f"Classifier timeout: {e}")
        except httpx.HTTPStatusError as e:
            logger.error(f"Gemini returned {e.response.status_code}")
            raise ClassifierError(f"Classifier error ({e.response.status_code})")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Gemini request failed: {e}")
            raise ClassifierError(f"Classifier request failed: {e}")

        candidates = body.get("candidates") or []
        if not candidates:
            raise ClassifierError("Classifier returned no candidates")

        parts = candidates[0].get("content", {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        if not text.strip():
            raise ClassifierError("Classifier returned an empty response")
        return text

    async def aclose(self) -> None:
        await self._http.aclose()
