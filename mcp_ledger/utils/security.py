# mcp_ledger/utils/security.py
import hashlib
import logging
import secrets
from typing import Optional
from cryptography.fernet import Fernet, InvalidToken
from base64 import urlsafe_b64decode

logger = logging.getLogger(__name__)


def generate_fernet_key() -> str:
    """Generates a new Fernet key and returns it as a string."""
    return Fernet.generate_key().decode('utf-8')


def generate_signing_secret(num_bytes: int = 48) -> str:
    """Generates a random secret suitable for BEARER_SIGNING_SECRET or OAUTH_CLIENT_SECRET."""
    return secrets.token_urlsafe(num_bytes)


def fingerprint_secret(value: str) -> str:
    """SHA-256 hex digest of a raw credential. Raw credentials are never persisted."""
    return hashlib.sha256(value.encode('utf-8')).hexdigest()


class FernetEncryptor:
    """Handles encryption and decryption of upstream tokens using Fernet."""

    def __init__(self, encryption_key: Optional[str]):
        """
        Initialize the encryptor with a Fernet-compatible key.

        A missing key is allowed (credentials are then stored unencrypted);
        a malformed key leaves the encryptor disabled and is logged as an error.

        Args:
            encryption_key: Base64-encoded Fernet key string, or None
        """
        self.fernet_instance: Optional[Fernet] = None
        self.key_valid = False
        if not encryption_key:
            logger.warning(
                "CREDENTIAL_ENCRYPTION_KEY is not set. Upstream tokens will be stored unencrypted."
            )
            return
        try:
            key_bytes = encryption_key.encode('utf-8')
            if len(urlsafe_b64decode(key_bytes)) != 32:
                logger.error("Invalid CREDENTIAL_ENCRYPTION_KEY: expected 32 bytes after base64 decoding.")
                return
            self.fernet_instance = Fernet(key_bytes)
            self.key_valid = True
            logger.info("FernetEncryptor initialized successfully with a valid key.")
        except (ValueError, TypeError) as e:
            logger.error(f"Failed to initialize FernetEncryptor with provided key. Error: {e}", exc_info=True)

    def encrypt(self, data: str) -> Optional[str]:
        """Encrypt a string; returns None when no valid key is configured."""
        if not self.fernet_instance or not self.key_valid:
            logger.error("Cannot encrypt: Fernet instance not available or key is invalid.")
            return None
        return self.fernet_instance.encrypt(data.encode('utf-8')).decode('utf-8')

    def decrypt(self, encrypted_data: str) -> Optional[str]:
        """
        Decrypt a Fernet-encrypted string.

        Returns:
            Decrypted plain text, or None if the key is missing or the token is invalid
        """
        if not self.fernet_instance or not self.key_valid:
            logger.error("Cannot decrypt: Fernet instance not available or key is invalid.")
            return None
        try:
            return self.fernet_instance.decrypt(encrypted_data.encode('utf-8')).decode('utf-8')
        except InvalidToken:
            logger.error(
                "Decryption failed: Invalid token. "
                "This may be due to an incorrect key or corrupted data."
            )
            return None
