"""Tests for the answer-value encryption service."""

from cryptography.fernet import Fernet

from clinical_forms.services.encryption import EncryptionService


def test_encrypt_decrypt_roundtrip():
    svc = EncryptionService()
    original = "Penicillin allergy; rash on exposure"
    encrypted = svc.encrypt(original)

    assert encrypted != original  # not stored in plaintext
    assert svc.decrypt(encrypted) == original


def test_empty_and_missing_values_pass_through():
    svc = EncryptionService()
    assert svc.encrypt("") == ""
    assert svc.decrypt("") == ""
    assert svc.encrypt(None) is None
    assert svc.decrypt(None) is None


def test_configured_key_is_shared_between_instances():
    key = Fernet.generate_key().decode()
    ciphertext = EncryptionService(key).encrypt("37.5")
    assert EncryptionService(key).decrypt(ciphertext) == "37.5"


def test_rotated_keys_still_decrypt_old_values():
    old_key = Fernet.generate_key().decode()
    new_key = Fernet.generate_key().decode()
    stored = EncryptionService(old_key).encrypt("latex;pollen")

    rotated = EncryptionService(f"{new_key},{old_key}")
    assert rotated.decrypt(stored) == "latex;pollen"

    rewritten = rotated.rotate(stored)
    assert EncryptionService(new_key).decrypt(rewritten) == "latex;pollen"
