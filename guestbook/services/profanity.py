"""
Client for the external profanity classifier.
"""

import logging

import httpx

from guestbook.settings import settings

logger = logging.getLogger(__name__)


class ProfanityServiceError(Exception):
    """The classifier could not be reached or answered garbage."""


class ProfanityChecker:
    """Ask the remote classifier whether a text is acceptable.

    The service takes the text and a ``heat`` threshold (lower heat flags
    more) and answers ``{"isValid": bool}``.
    """

    def __init__(
        self,
        api_url: str | None = None,
        heat: float | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url or settings.profanity_api_url
        self.heat = settings.profanity_heat if heat is None else heat
        self.timeout = timeout or settings.profanity_timeout_seconds
        self._client = client

    async def is_clean(self, text: str) -> bool:
        """Return True when the classifier accepts the text."""
        if not text.strip():
            return True

        payload = {"text": text, "heat": self.heat}
        try:
            if self._client is not None:
                response = await self._client.post(self.api_url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.api_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Profanity check failed: {e}")
            raise ProfanityServiceError("Profanity check is unavailable right now") from e

        if "isValid" not in data:
            raise ProfanityServiceError("Profanity check returned an unexpected response")
        return bool(data["isValid"])
