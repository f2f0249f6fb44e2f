from typing import Optional

from cryptography.fernet import InvalidToken
from sqlalchemy import LargeBinary
from sqlalchemy.types import TypeDecorator

from loanflow.core.fernet_crypto import get_fernet


class EncryptedString(TypeDecorator):
    """Transparent encryption/decryption for string fields using Fernet."""

    impl = LargeBinary
    cache_ok = True

    def __init__(self, *, secret: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._secret = secret

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return bytes(get_fernet(secret=self._secret).encrypt(str(value).encode("utf-8")))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return get_fernet(secret=self._secret).decrypt(value).decode("utf-8")
        except InvalidToken as exc:  # pragma: no cover - indicates corrupted data or rotated key
            raise ValueError("Unable to decrypt value") from exc


__all__ = ["EncryptedString"]
