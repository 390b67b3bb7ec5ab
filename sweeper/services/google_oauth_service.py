"""
Google OAuth token refresh.

The sweep never runs the consent flow; it only trades a stored refresh
token for a short-lived Gmail access token.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import httpx
from pydantic import BaseModel, model_validator

from sweeper.config import settings
from sweeper.infrastructure.observability.logging import get_logger
from sweeper.services.google_errors import FetchError, classify_response

logger = get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

REQUEST_TIMEOUT = 10  # seconds
MAX_ATTEMPTS = 3
BACKOFF_FACTOR = 2  # waits 2s then 4s
RETRY_STATUS_CODES = frozenset({500, 502, 503, 504})


class GoogleOAuthError(Exception):
    """OAuth client credentials are missing."""

    kind = "oauth_config"


class TokenResponse(BaseModel):
    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: str = ""
    expires_at: datetime | None = None

    @model_validator(mode="after")
    def _derive_expiry(self) -> "TokenResponse":
        if self.expires_in and self.expires_at is None:
            self.expires_at = datetime.now(UTC) + timedelta(seconds=self.expires_in)
        return self


class GoogleOAuthService:
    def __init__(self, client_id: str | None = None, client_secret: str | None = None):
        self.client_id = client_id or settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_CLIENT_SECRET
        missing = [
            name
            for name, value in (
                ("GOOGLE_CLIENT_ID", self.client_id),
                ("GOOGLE_CLIENT_SECRET", self.client_secret),
            )
            if not value
        ]
        if missing:
            raise GoogleOAuthError(f"{', '.join(missing)} not configured")

    async def _post_form(self, data: dict, operation: str) -> httpx.Response:
        """POST to the token endpoint, backing off on 5xx and transport errors."""
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            attempt = 1
            while True:
                try:
                    response = await client.post(GOOGLE_TOKEN_URL, data=data)
                except httpx.RequestError as exc:
                    if attempt >= MAX_ATTEMPTS:
                        raise FetchError(f"{operation} transport error: {exc}") from exc
                    reason = {"error": str(exc), "error_type": type(exc).__name__}
                else:
                    if response.status_code not in RETRY_STATUS_CODES or attempt >= MAX_ATTEMPTS:
                        return response
                    reason = {"status_code": response.status_code}

                wait_time = BACKOFF_FACTOR**attempt
                logger.warning(
                    "Retrying Google token request",
                    operation=operation,
                    attempt=attempt,
                    wait_time=wait_time,
                    **reason,
                )
                await asyncio.sleep(wait_time)
                attempt += 1

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Exchange a refresh token for a new access token.

        Raises:
            AuthError: The grant was rejected (revoked or expired refresh token)
            FetchError: Any other failure
        """
        response = await self._post_form(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            operation="refresh_token",
        )

        if not response.is_success:
            error = classify_response(response, "refresh_token")
            logger.error(
                "Google token refresh rejected",
                status_code=response.status_code,
                error_kind=error.kind,
            )
            raise error

        try:
            token = TokenResponse.model_validate(response.json())
        except ValueError as e:
            raise FetchError(f"refresh_token returned an unreadable body: {e}") from e
        if not token.access_token:
            raise FetchError("refresh_token returned no access token")

        logger.info("Access token refreshed", expires_in=token.expires_in)
        return token
