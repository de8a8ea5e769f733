"""Tests for secrets encryption and hosted key rotation."""

import pytest

from app.config import get_rotating_api_key
from app.db.secrets import (
    SecretsError,
    _fernet_for,
    decrypt_secret,
    decrypt_variables,
    encrypt_secret,
    rotate_encryption_key,
)


class TestSecrets:
    """Tests for Fernet helpers."""

    def test_encrypt_decrypt(self):
        encrypted = encrypt_secret("sk-123")
        assert encrypted != "sk-123"
        assert decrypt_secret(encrypted) == "sk-123"

    def test_decrypt_invalid(self):
        with pytest.raises(SecretsError):
            decrypt_secret("not-a-token")

    def test_decrypt_variables_names_failure(self):
        with pytest.raises(SecretsError, match='"BROKEN"'):
            decrypt_variables({"OK": encrypt_secret("1"), "BROKEN": "garbage"})

    def test_rotate_key(self):
        old = _fernet_for("old-key").encrypt(b"value").decode()

        [rotated] = rotate_encryption_key([old], "old-key", "new-key")

        assert _fernet_for("new-key").decrypt(rotated.encode()) == b"value"


class TestRotatingKeys:
    """Tests for get_rotating_api_key."""

    def test_no_keys(self, monkeypatch):
        for i in (1, 2, 3):
            monkeypatch.delenv(f"ANTHROPIC_API_KEY_{i}", raising=False)
        with pytest.raises(ValueError, match="No API keys configured"):
            get_rotating_api_key("anthropic")

    def test_picks_configured_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY_1", "k1")
        monkeypatch.setenv("ANTHROPIC_API_KEY_2", "k2")
        monkeypatch.delenv("ANTHROPIC_API_KEY_3", raising=False)
        assert get_rotating_api_key("anthropic") in {"k1", "k2"}
