"""Encryption service for peer credentials held in sync configurations."""

import sys
from typing import Optional
from cryptography.fernet import Fernet
from fieldsync.config import settings

KEY_HINT = "Generate a key with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""


class EncryptionService:
    """Encrypts peer API keys and passwords at rest."""

    def __init__(self, key: Optional[str] = None):
        """Initialize encryption service.

        Args:
            key: Fernet key. Defaults to settings.encryption_key.
        """
        self._key = key or settings.encryption_key
        self._validate_encryption_key()
        self._fernet = Fernet(self._key.encode())

    def _validate_encryption_key(self) -> None:
        """Validate that the encryption key is usable.

        Raises:
            SystemExit: If the key is missing or not a valid Fernet key.
        """
        if not self._key:
            print("ERROR: ENCRYPTION_KEY environment variable is not set.", file=sys.stderr)
            print("Peer credentials cannot be stored without an encryption key.", file=sys.stderr)
            print(KEY_HINT, file=sys.stderr)
            sys.exit(1)

        try:
            Fernet(self._key.encode())
        except Exception as e:
            print(f"ERROR: Invalid ENCRYPTION_KEY format: {e}", file=sys.stderr)
            print(KEY_HINT, file=sys.stderr)
            sys.exit(1)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string and return the base64 token."""
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a base64 token.

        Raises:
            InvalidToken: If the token is invalid or was made with another key.
        """
        return self._fernet.decrypt(ciphertext.encode()).decode()

    def encrypt_secret(self, value: Optional[str]) -> Optional[str]:
        """Encrypt a secret, mapping blank input to None."""
        if value is None or not value.strip():
            return None
        return self.encrypt(value)

    def decrypt_secret(self, token: Optional[str]) -> Optional[str]:
        """Decrypt a stored secret, passing None through."""
        if not token:
            return None
        return self.decrypt(token)
