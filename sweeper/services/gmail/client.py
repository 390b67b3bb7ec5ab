"""
Low-level Gmail API client.
Only the two read endpoints the sweep needs: list message ids and get
message header metadata. Errors are classified into the tagged Google errors.
"""

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from sweeper.features.sweep.domain.models import MessageMetadata
from sweeper.infrastructure.observability.logging import get_logger
from sweeper.services.google_errors import FetchError, classify_response

logger = get_logger(__name__)

GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_USER_ID = "me"

REQUEST_TIMEOUT = 30  # seconds
MAX_PAGE_SIZE = 500  # Gmail API limit for messages.list
METADATA_HEADERS = ("From", "Subject", "Date")


class GmailClient:
    """
    Thin async Gmail REST client.

    Holds one httpx.AsyncClient for the lifetime of a sweep; call close()
    when done.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)

    async def close(self) -> None:
        await self._client.aclose()

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    async def _get(
        self, url: str, access_token: str, params: Any, operation: str
    ) -> dict[str, Any]:
        try:
            response = await self._client.get(
                url, headers=self._get_auth_headers(access_token), params=params
            )
        except httpx.RequestError as e:
            logger.warning(
                f"Gmail API {operation} transport error",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise FetchError(f"{operation} transport error: {e}") from e

        if not response.is_success:
            raise classify_response(response, operation)

        try:
            return response.json() if response.content else {}
        except ValueError as e:
            raise FetchError(f"{operation} returned invalid JSON: {e}") from e

    async def list_message_ids(
        self,
        access_token: str,
        query: str,
        max_results: int = MAX_PAGE_SIZE,
        page_token: str | None = None,
        include_spam_trash: bool = False,
    ) -> tuple[list[str], str | None]:
        """
        List one page of message ids matching a Gmail search query.

        Returns:
            (message ids, next page token or None)
        """
        params: dict[str, Any] = {
            "q": query,
            "maxResults": min(max_results, MAX_PAGE_SIZE),
            "includeSpamTrash": "true" if include_spam_trash else "false",
        }
        if page_token:
            params["pageToken"] = page_token

        data = await self._get(
            f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/messages",
            access_token,
            params,
            "list_messages",
        )
        ids = [msg["id"] for msg in data.get("messages", []) if msg.get("id")]
        return ids, data.get("nextPageToken")

    async def get_message_metadata(self, access_token: str, message_id: str) -> MessageMetadata:
        """Fetch From/Subject/Date headers and the received instant of one message."""
        params = [("format", "metadata")] + [("metadataHeaders", h) for h in METADATA_HEADERS]

        data = await self._get(
            f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/messages/{message_id}",
            access_token,
            params,
            "get_message",
        )
        return parse_message_metadata(data, message_id)


def parse_message_metadata(data: dict[str, Any], fallback_id: str) -> MessageMetadata:
    headers = {
        (h.get("name") or "").lower(): h.get("value") or ""
        for h in data.get("payload", {}).get("headers", [])
    }

    received_at = None
    internal_date = data.get("internalDate")
    if internal_date:
        try:
            received_at = datetime.fromtimestamp(int(internal_date) / 1000, tz=UTC)
        except (TypeError, ValueError, OverflowError):
            logger.debug("Ignoring unparseable internalDate", message_id=fallback_id)

    if received_at is None:
        received_at = parse_header_date(headers.get("date", ""))

    return MessageMetadata(
        id=data.get("id") or fallback_id,
        sender=headers.get("from", ""),
        subject=headers.get("subject", ""),
        date=headers.get("date", ""),
        received_at=received_at,
    )


def parse_header_date(value: str) -> datetime | None:
    """Parse an RFC 2822 Date header into an aware UTC instant."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
