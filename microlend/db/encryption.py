from __future__ import annotations

import base64
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy import LargeBinary
from sqlalchemy.types import TypeDecorator

from microlend.core.settings import settings


@lru_cache(maxsize=8)
def _fernet_for(secret: str, salt: str, iterations: int) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt.encode("utf-8"),
        iterations=max(100_000, iterations),
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8"))))


def get_fernet(secret: Optional[str] = None) -> Fernet:
    return _fernet_for(
        secret or settings.secret_key,
        settings.fernet_kdf_salt,
        settings.fernet_kdf_iterations,
    )


class EncryptedString(TypeDecorator):
    """Fernet-encrypted text column for borrower and employee PII."""

    impl = LargeBinary
    cache_ok = True

    def __init__(self, *args, secret: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._secret = secret

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return get_fernet(self._secret).encrypt(str(value).encode("utf-8"))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return get_fernet(self._secret).decrypt(bytes(value)).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Unable to decrypt value") from exc


__all__ = ["EncryptedString", "get_fernet"]
