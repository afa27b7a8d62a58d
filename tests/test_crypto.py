"""Tests for credential encryption."""
import re
import pytest
from tally_sync.config import AppSettings, ConfigurationError
from tally_sync.crypto import CredentialCipher, CredentialError


def test_ciphertext_format_and_fresh_iv(cipher):
    first = cipher.encrypt("key-123")
    second = cipher.encrypt("key-123")
    assert re.fullmatch(r"[0-9a-f]{32}:[0-9a-f]+", first)
    assert first != second
    assert cipher.decrypt(first) == cipher.decrypt(second) == "key-123"


def test_empty_values_pass_through(cipher):
    assert cipher.encrypt("") is None
    assert cipher.encrypt(None) is None
    assert cipher.decrypt(None) is None


def test_malformed_ciphertext(cipher):
    with pytest.raises(CredentialError):
        cipher.decrypt("no-separator")
    with pytest.raises(CredentialError):
        cipher.decrypt("zz:zz")


def test_key_length_enforced():
    with pytest.raises(ConfigurationError):
        CredentialCipher(b"short")


def test_production_without_key_refuses():
    with pytest.raises(ConfigurationError):
        CredentialCipher.from_settings(AppSettings(environment="production", encryption_key=None))


def test_development_without_key_gets_ephemeral_key():
    cipher = CredentialCipher.from_settings(AppSettings(environment="development", encryption_key=None))
    assert cipher.decrypt(cipher.encrypt("s3cret")) == "s3cret"
    assert "key=***" in repr(cipher)
