"""
Encryption of storage credentials at rest.

Secret access keys are written to the database encrypted with Fernet
when CREDENTIALS_ENCRYPTION_KEY is configured. Rows written before the
key was set (plain values) still read back, so enabling encryption
doesn't require a migration.
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "fernet:"


class SecretDecryptionError(Exception):
    """Raised when a stored secret cannot be decrypted with the configured key."""
    pass


class SecretCipher:
    """
    Symmetric encryption for credential columns.

    Without a key the cipher is a passthrough; encrypted values are then
    unreadable and raise SecretDecryptionError.
    """

    def __init__(self, key: Optional[str] = None) -> None:
        self._fernet = Fernet(key.encode()) if key else None

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, value: str) -> str:
        if not value or self._fernet is None:
            return value
        token = self._fernet.encrypt(value.encode()).decode()
        return f"{ENCRYPTED_PREFIX}{token}"

    def decrypt(self, value: str) -> str:
        if not value or not value.startswith(ENCRYPTED_PREFIX):
            return value
        if self._fernet is None:
            raise SecretDecryptionError("Encrypted secret found but no encryption key is configured")

        try:
            return self._fernet.decrypt(value[len(ENCRYPTED_PREFIX):].encode()).decode()
        except InvalidToken:
            logger.error("Failed to decrypt stored secret (wrong key?)")
            raise SecretDecryptionError("Stored secret cannot be decrypted with the configured key")
