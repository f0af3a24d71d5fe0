"""Unit tests for credential encryption at rest."""

import pytest

from clist.infrastructure.secrets import ENCRYPTED_PREFIX, SecretCipher, SecretDecryptionError


class TestSecretCipher:

    def test_passthrough_without_key(self):
        cipher = SecretCipher()
        assert not cipher.enabled
        assert cipher.encrypt("plain") == "plain"
        assert cipher.decrypt("plain") == "plain"

    def test_encrypts_with_prefix(self):
        cipher = SecretCipher(SecretCipher.generate_key())
        token = cipher.encrypt("s3cr3t")
        assert token.startswith(ENCRYPTED_PREFIX)
        assert "s3cr3t" not in token
        assert cipher.decrypt(token) == "s3cr3t"

    def test_plain_values_still_readable_after_enabling(self):
        cipher = SecretCipher(SecretCipher.generate_key())
        assert cipher.decrypt("stored-before-key") == "stored-before-key"

    def test_empty_value_is_not_encrypted(self):
        cipher = SecretCipher(SecretCipher.generate_key())
        assert cipher.encrypt("") == ""

    def test_wrong_key_raises(self):
        token = SecretCipher(SecretCipher.generate_key()).encrypt("value")
        with pytest.raises(SecretDecryptionError, match="cannot be decrypted"):
            SecretCipher(SecretCipher.generate_key()).decrypt(token)

    def test_missing_key_raises_for_encrypted_value(self):
        token = SecretCipher(SecretCipher.generate_key()).encrypt("value")
        with pytest.raises(SecretDecryptionError, match="no encryption key"):
            SecretCipher().decrypt(token)
