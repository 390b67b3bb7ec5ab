"""
Token lifecycle management for Gmail calls.

Guarantees a usable access token before and during an external operation:
proactive refresh when the stored token has already expired, and exactly one
reactive refresh-and-retry when the operation reports an AuthError.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Protocol, TypeVar

from sweeper.features.sweep.domain.models import GmailAccount
from sweeper.infrastructure.observability.logging import get_logger
from sweeper.services.google_errors import AuthError
from sweeper.services.google_oauth_service import GoogleOAuthService
from sweeper.services.infrastructure.encryption_service import TokenVault

logger = get_logger(__name__)

T = TypeVar("T")


class CredentialStore(Protocol):
    async def update_gmail_access_token(
        self, user_id: str, access_token_encrypted: bytes, token_expires_at: datetime | None
    ) -> None: ...


class TokenLifecycleManager:
    """
    Runs Gmail operations with a valid access token.

    The GmailAccount passed in is updated in place after every refresh, so a
    later call within the same sweep starts from the newest token.
    """

    def __init__(
        self,
        vault: TokenVault,
        oauth_service: GoogleOAuthService,
        credential_store: CredentialStore,
        clock: Callable[[], datetime] | None = None,
    ):
        self._vault = vault
        self._oauth = oauth_service
        self._store = credential_store
        self._clock = clock or (lambda: datetime.now(UTC))

    async def with_valid_credential(
        self, account: GmailAccount, operation: Callable[[str], Awaitable[T]]
    ) -> T:
        """
        Run ``operation(access_token)``, refreshing the token at most once on AuthError.

        Raises:
            AuthError: No refresh token is stored, the refresh grant was
                rejected, or the retried operation failed authentication again
        """
        access_token = await self.ensure_valid_access_token(account)

        try:
            return await operation(access_token)
        except AuthError:
            if not account.has_refresh_token:
                logger.error(
                    "Gmail auth error with no refresh token; cannot recover",
                    user_id=account.user_id,
                )
                raise

            logger.warning(
                "Gmail auth error detected, refreshing token and retrying once",
                user_id=account.user_id,
            )

        access_token = await self._refresh_and_persist(account)
        return await operation(access_token)

    async def ensure_valid_access_token(self, account: GmailAccount) -> str:
        """Decrypt the stored token, refreshing first if it has already expired."""
        if account.is_expired(self._clock()) and account.has_refresh_token:
            logger.info(
                "Access token expired, refreshing before Gmail call",
                user_id=account.user_id,
                expired_at=account.token_expires_at.isoformat(),
            )
            return await self._refresh_and_persist(account)

        return self._vault.decrypt(account.access_token_encrypted)

    async def _refresh_and_persist(self, account: GmailAccount) -> str:
        refresh_token = self._vault.decrypt(account.refresh_token_encrypted)
        token_response = await self._oauth.refresh_access_token(refresh_token)

        encrypted_access = self._vault.encrypt(token_response.access_token)

        # The new token is only used once it is durably stored
        await self._store.update_gmail_access_token(
            account.user_id, encrypted_access, token_response.expires_at
        )

        account.access_token_encrypted = encrypted_access
        account.token_expires_at = token_response.expires_at

        logger.info(
            "Refreshed access token persisted",
            user_id=account.user_id,
            expires_at=(
                token_response.expires_at.isoformat() if token_response.expires_at else None
            ),
        )
        return token_response.access_token
