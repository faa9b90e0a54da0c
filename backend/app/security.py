import hashlib
import hmac
import re
from typing import Optional
from passlib.context import CryptContext

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)

_PIN_RE = re.compile(r"^\d{4,6}$")


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed or not password:
        return False
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        # Not a bcrypt hash (e.g. a row imported without a password).
        return False


def needs_rehash(hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return _pwd_context.needs_update(hashed)


def hash_session_token(token: str) -> str:
    # Store sessions as a one-way hash so a DB leak doesn't immediately grant access.
    return "sha256:" + hashlib.sha256(token.encode("utf-8")).hexdigest()


def is_valid_pin(pin: Optional[str]) -> bool:
    return bool(pin) and bool(_PIN_RE.match(pin))


def constant_time_equals(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
