"""
At-rest field encryption for "sensitive" columns (names, salaries, dates, PINs).

Layout of a stored value: base64( iv(16) || tag(16) || ciphertext ).

The key is SHA-256(AUTH_KEY) so any non-empty secret yields a 32-byte AES-256 key.
Equality search over encrypted columns goes through `lookup_hash()`, stored in a
companion `*_hash` column.
"""
import base64
import binascii
import hashlib
import hmac
import os
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import settings

IV_LENGTH = 16
TAG_LENGTH = 16
MIN_ENCRYPTED_LENGTH = IV_LENGTH + TAG_LENGTH + 1


def _key() -> bytes:
    secret = settings.auth_key
    if not secret:
        raise RuntimeError("AUTH_KEY environment variable is not set")
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    iv = os.urandom(IV_LENGTH)
    # AESGCM appends the tag to the ciphertext; we store it in front.
    sealed = AESGCM(_key()).encrypt(iv, str(value).encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(iv + tag + ciphertext).decode("ascii")


def decrypt(value: Optional[str]) -> Optional[str]:
    """
    Decrypt a stored value. Anything that is not our ciphertext (legacy plaintext rows,
    values written before encryption was enabled) is returned unchanged.
    """
    if value is None or value == "":
        return None
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return value
    if len(raw) < MIN_ENCRYPTED_LENGTH:
        return value
    iv = raw[:IV_LENGTH]
    tag = raw[IV_LENGTH:IV_LENGTH + TAG_LENGTH]
    ciphertext = raw[IV_LENGTH + TAG_LENGTH:]
    try:
        plain = AESGCM(_key()).decrypt(iv, ciphertext + tag, None)
    except InvalidTag:
        return value
    try:
        return plain.decode("utf-8")
    except UnicodeDecodeError:
        return value


def encrypt_date(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return encrypt(value.isoformat())


def decrypt_date(value: Optional[str]) -> Optional[datetime]:
    plain = decrypt(value)
    if not plain:
        return None
    try:
        # JS-era rows end with "Z".
        return datetime.fromisoformat(plain.replace("Z", "+00:00"))
    except ValueError:
        return None


def encrypt_number(value) -> Optional[str]:
    if value is None:
        return None
    return encrypt(str(value))


def decrypt_number(value: Optional[str]) -> Decimal:
    plain = decrypt(value)
    if not plain:
        return Decimal("0")
    try:
        return Decimal(plain)
    except InvalidOperation:
        return Decimal("0")


def lookup_hash(value: Optional[str]) -> Optional[str]:
    """Deterministic hash for equality lookups on encrypted columns (case-insensitive)."""
    if value is None:
        return None
    normalized = str(value).strip().lower()
    if not normalized:
        return None
    return hmac.new(_key(), normalized.encode("utf-8"), hashlib.sha256).hexdigest()
