"""Encryption service for upstream channel credentials."""

import sys
from typing import Optional
from cryptography.fernet import Fernet
from tokenhub.config import settings

KEY_HINT = "Generate a key with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""


class EncryptionService:
    """Encrypts and decrypts channel API keys at rest."""

    def __init__(self, key: Optional[str] = None):
        """Initialize encryption service.
        
        Args:
            key: Fernet key. Defaults to ``settings.encryption_key``.
        """
        self._key = key if key is not None else settings.encryption_key
        self._validate_encryption_key()
        self._fernet = Fernet(self._key.encode())

    def _validate_encryption_key(self) -> None:
        """Validate that encryption key is properly configured.
        
        Raises:
            SystemExit: If encryption key is missing or invalid.
        """
        if not self._key:
            print("ERROR: ENCRYPTION_KEY environment variable is not set.", file=sys.stderr)
            print("Channel credentials cannot be stored without a valid encryption key.", file=sys.stderr)
            print(KEY_HINT, file=sys.stderr)
            sys.exit(1)

        try:
            Fernet(self._key.encode())
        except Exception as e:
            print(f"ERROR: Invalid ENCRYPTION_KEY format: {e}", file=sys.stderr)
            print(KEY_HINT, file=sys.stderr)
            sys.exit(1)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt plaintext string.
        
        Returns:
            The encrypted string (base64 encoded).
        """
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt ciphertext string.
        
        Raises:
            InvalidToken: If the ciphertext is invalid or corrupted.
        """
        return self._fernet.decrypt(ciphertext.encode()).decode()


def mask_secret(secret: str) -> str:
    """Show only the first 3 and last 4 characters of a secret."""
    if len(secret) > 10:
        return f"{secret[:3]}{'*' * 15}{secret[-4:]}"
    return "*" * len(secret)
