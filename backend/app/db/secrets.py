"""Encryption helpers for user environment variables.

Values are encrypted with Fernet. The key is derived from the SECRETS_KEY
environment variable.
"""

import base64
import hashlib
import logging
import os
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from app.config import DATABASE_PATH

logger = logging.getLogger(__name__)


class SecretsError(Exception):
    """Error related to secrets management."""

    pass


def _fernet_for(key_material: str) -> Fernet:
    """Build a Fernet cipher from arbitrary key material (SHA-256 derived)."""
    key_hash = hashlib.sha256(key_material.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(key_hash))


@lru_cache(maxsize=1)
def _get_fernet() -> Fernet:
    """Get the Fernet cipher for the configured SECRETS_KEY.

    Without SECRETS_KEY a key derived from DATABASE_PATH is used.
    NOT SECURE FOR PRODUCTION.
    """
    key_material = os.environ.get("SECRETS_KEY")
    if not key_material:
        logger.warning("SECRETS_KEY is not set, using development key")
        key_material = f"dev-secrets-key-{DATABASE_PATH}"
    return _fernet_for(key_material)


def encrypt_secret(value: str) -> str:
    """Encrypt a secret value.

    Args:
        value: The plaintext secret value

    Returns:
        Base64-encoded encrypted value
    """
    encrypted = _get_fernet().encrypt(value.encode("utf-8"))
    return encrypted.decode("utf-8")


def decrypt_secret(encrypted_value: str) -> str:
    """Decrypt a secret value.

    Raises:
        SecretsError: If decryption fails
    """
    try:
        decrypted = _get_fernet().decrypt(encrypted_value.encode("utf-8"))
        return decrypted.decode("utf-8")
    except (InvalidToken, ValueError, TypeError, AttributeError) as e:
        raise SecretsError(f"Failed to decrypt secret: {e}") from e


def decrypt_variables(encrypted: dict[str, str]) -> dict[str, str]:
    """Decrypt a mapping of environment variable names to encrypted values.

    Raises:
        SecretsError: Naming the first variable that fails to decrypt
    """
    decrypted: dict[str, str] = {}
    for name, value in encrypted.items():
        try:
            decrypted[name] = decrypt_secret(value)
        except SecretsError as e:
            raise SecretsError(f"Failed to decrypt environment variable \"{name}\"") from e
    return decrypted


def rotate_encryption_key(
    old_encrypted_values: list[str],
    old_key_material: str,
    new_key_material: str,
) -> list[str]:
    """Re-encrypt values with a new key.

    Used when rotating the SECRETS_KEY.
    """
    old_fernet = _fernet_for(old_key_material)
    new_fernet = _fernet_for(new_key_material)

    return [
        new_fernet.encrypt(old_fernet.decrypt(encrypted.encode("utf-8"))).decode("utf-8")
        for encrypted in old_encrypted_values
    ]
