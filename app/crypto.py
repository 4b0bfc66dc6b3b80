"""
Fernet encryption for the stored OAuth credential.

TOKEN_ENCRYPTION_KEY holds one or more comma-separated Fernet keys. The first
key encrypts; every key is tried on decrypt, so a key can be rotated by
prepending the new one and re-authorizing (or waiting for the next refresh,
which re-encrypts the credential with the new key).
"""
import os

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

__all__ = ["InvalidToken", "decrypt", "encrypt", "load_cipher"]


def load_cipher(raw_keys: str | None) -> MultiFernet:
    keys = [k.strip() for k in (raw_keys or "").split(",") if k.strip()]
    if not keys:
        raise RuntimeError("TOKEN_ENCRYPTION_KEY environment variable is required")
    try:
        return MultiFernet([Fernet(k.encode()) for k in keys])
    except ValueError as e:
        raise RuntimeError(f"TOKEN_ENCRYPTION_KEY is not a valid Fernet key: {e}") from e


_cipher = load_cipher(os.environ.get("TOKEN_ENCRYPTION_KEY"))


def encrypt(value: str) -> str:
    return _cipher.encrypt(value.encode()).decode()


def decrypt(value: str | None) -> str | None:
    """
    Decrypt a stored credential; None passes through.
    Raises InvalidToken when no configured key produced the value.
    """
    if value is None:
        return None
    return _cipher.decrypt(value.encode()).decode()
