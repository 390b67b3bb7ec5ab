"""
Breach correlation against the Have I Been Pwned v3 API.

Breach data is enrichment only: not-found, provider errors and transport
failures all come back as an empty list.
"""

from typing import Any
from urllib.parse import quote

import httpx

from sweeper.config import settings
from sweeper.features.sweep.domain import BreachRecord
from sweeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

HIBP_API_BASE_URL = "https://haveibeenpwned.com/api/v3"
HIBP_USER_AGENT = "mailbox-sweeper"
REQUEST_TIMEOUT = 15  # seconds


class BreachLookupError(Exception):
    """Raised internally when the lookup cannot produce a usable answer."""

    kind = "breach_lookup"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class BreachService:
    def __init__(self, api_key: str | None = None, client: httpx.AsyncClient | None = None):
        self.api_key = api_key if api_key is not None else settings.HIBP_API_KEY
        self._client = client

    async def lookup_breaches(self, email: str) -> list[BreachRecord]:
        """Breaches for a mailbox address; never raises."""
        if not email:
            return []
        if not self.api_key:
            logger.warning("HIBP_API_KEY not configured, skipping breach lookup")
            return []

        try:
            payload = await self._fetch(email)
        except BreachLookupError as e:
            logger.warning(
                "Breach lookup failed, treating as no breaches",
                status_code=e.status_code,
                error=str(e),
            )
            return []

        breaches = [record for record in map(_parse_breach, payload) if record is not None]
        logger.info("Breach lookup completed", breach_count=len(breaches))
        return breaches

    async def _fetch(self, email: str) -> list:
        url = f"{HIBP_API_BASE_URL}/breachedaccount/{quote(email, safe='@')}"
        headers = {"hibp-api-key": self.api_key, "user-agent": HIBP_USER_AGENT}
        params = {"truncateResponse": "false"}

        try:
            if self._client:
                response = await self._client.get(url, headers=headers, params=params)
            else:
                async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                    response = await client.get(url, headers=headers, params=params)
        except httpx.RequestError as e:
            raise BreachLookupError(f"Transport error: {e}") from e

        if response.status_code == 404:
            return []
        if not response.is_success:
            raise BreachLookupError(
                f"HIBP returned {response.status_code}", status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise BreachLookupError(f"Invalid JSON from HIBP: {e}") from e
        return data if isinstance(data, list) else []


def _parse_breach(item: Any) -> BreachRecord | None:
    if not isinstance(item, dict):
        return None
    try:
        return BreachRecord.from_hibp(item)
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning("Skipping malformed breach record", name=item.get("Name"), error=str(e))
        return None
