"""
Encryption of deposit private keys at rest.
"""

import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import ConfigurationError

KDF_SALT = b"funding-pipeline/deposit-keys/v1"
KDF_ITERATIONS = 390000


class KeyCipher:
    """Fernet cipher keyed from KEY_ENCRYPTION_SECRET."""

    def __init__(self, secret: str):
        if not secret:
            raise ConfigurationError("KEY_ENCRYPTION_SECRET is required")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=KDF_SALT,
            iterations=KDF_ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None:
            return None
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise ConfigurationError("Private key blob cannot be decrypted with the configured secret") from e
