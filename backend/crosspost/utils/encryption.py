"""Encryption of OAuth tokens at rest"""
import logging
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from crosspost.core.config import settings

logger = logging.getLogger(__name__)

_KEY_HINT = (
    "Generate one with: python -c \"from cryptography.fernet import Fernet; "
    "print(Fernet.generate_key().decode())\""
)


@lru_cache(maxsize=1)
def get_cipher() -> Fernet:
    """Build the Fernet cipher from ENCRYPTION_KEY on first use"""
    key = settings.ENCRYPTION_KEY
    if not key:
        raise ValueError(f"ENCRYPTION_KEY environment variable is required. {_KEY_HINT}")
    try:
        return Fernet(key.encode())
    except ValueError as e:
        raise ValueError(
            f"Invalid ENCRYPTION_KEY format: {e}. "
            f"The key must be 32 url-safe base64-encoded bytes. {_KEY_HINT}"
        )


def encrypt(plaintext: str) -> str:
    """Encrypt a string"""
    if not plaintext:
        return ""
    return get_cipher().encrypt(plaintext.encode()).decode()


def decrypt(ciphertext: str) -> Optional[str]:
    """Decrypt a string

    Raises:
        ValueError: If decryption fails (wrong key, corrupted data)
    """
    if not ciphertext:
        return None
    try:
        return get_cipher().decrypt(ciphertext.encode()).decode()
    except InvalidToken as e:
        logger.error(f"Decryption failed: {type(e).__name__}")
        raise ValueError(f"Decryption failed: {type(e).__name__}")
