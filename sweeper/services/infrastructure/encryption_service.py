"""
Fernet vault for OAuth credentials stored in gmail_accounts.
"""

import binascii

from cryptography.fernet import Fernet, InvalidToken

from sweeper.config import settings
from sweeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

VALIDATION_PROBE = "sweep_encryption_probe"


class EncryptionError(Exception):
    kind = "encryption"


class TokenVault:
    """Encrypts and decrypts credentials with a key supplied by the caller."""

    def __init__(self, key: str | bytes | None):
        if not key:
            raise EncryptionError("Token encryption key not configured")
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError, binascii.Error) as e:
            logger.error("Rejected token encryption key", error=str(e))
            raise EncryptionError(f"Invalid encryption key: {e}") from e

    def encrypt(self, token: str) -> bytes:
        if not isinstance(token, str) or not token:
            raise EncryptionError("Token must be a non-empty string")
        return self._fernet.encrypt(token.encode("utf-8"))

    def decrypt(self, encrypted_token: bytes | memoryview | str) -> str:
        """
        Decrypt a stored credential.

        BYTEA columns arrive as bytes or memoryview; legacy text columns as str.

        Raises:
            EncryptionError: Empty input, wrong key, or tampered ciphertext
        """
        if isinstance(encrypted_token, memoryview):
            encrypted_token = encrypted_token.tobytes()
        elif isinstance(encrypted_token, str):
            encrypted_token = encrypted_token.encode("utf-8")
        if not encrypted_token:
            raise EncryptionError("Encrypted token is empty")

        try:
            return self._fernet.decrypt(encrypted_token).decode("utf-8")
        except InvalidToken as e:
            logger.error("Token decryption failed, wrong key or corrupted value")
            raise EncryptionError("Invalid or corrupted token") from e

    def validate(self) -> bool:
        try:
            return self.decrypt(self.encrypt(VALIDATION_PROBE)) == VALIDATION_PROBE
        except EncryptionError as e:
            logger.error("Token vault self-check failed", error=str(e))
            return False


def build_token_vault() -> TokenVault:
    return TokenVault(settings.TOKEN_ENCRYPTION_KEY)


def generate_new_key() -> str:
    """New Fernet key for TOKEN_ENCRYPTION_KEY (initial setup or rotation)."""
    return Fernet.generate_key().decode("utf-8")
