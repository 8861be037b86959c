"""
Encryption at rest for answer values.

An answer is validated as plaintext first; only a value that passed
validation is encrypted and written to ``form_answers.encrypted_value``. Reads
decrypt on the way out, so services never hold ciphertext and plaintext for
the same answer in one place.

``PHI_ENCRYPTION_KEY`` may list several comma-separated Fernet keys, newest
first. The first key encrypts; every key can decrypt, which lets old rows stay
readable while keys rotate.
"""

from cryptography.fernet import Fernet, MultiFernet

from clinical_forms.config import settings


class EncryptionService:
    """Fernet (MultiFernet when several keys are configured) for answer values."""

    def __init__(self, key: str | None = None):
        raw_keys = [k.strip() for k in (key or settings.PHI_ENCRYPTION_KEY).split(",") if k.strip()]
        if not raw_keys:
            # Development only: a process-local key, values do not survive a restart
            raw_keys = [Fernet.generate_key().decode()]
        self._fernet = MultiFernet([Fernet(k.encode()) for k in raw_keys])

    def encrypt(self, plaintext: str | None) -> str | None:
        """Encrypt a validated answer value. ``None`` (no answer) and ``""`` pass through."""
        if plaintext is None:
            return None
        if not plaintext:
            return ""
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str | None) -> str | None:
        if ciphertext is None:
            return None
        if not ciphertext:
            return ""
        return self._fernet.decrypt(ciphertext.encode()).decode()

    def rotate(self, ciphertext: str | None) -> str | None:
        """Re-encrypt a stored value under the newest key."""
        if not ciphertext:
            return ciphertext
        return self._fernet.rotate(ciphertext.encode()).decode()


encryption = EncryptionService()
