import hashlib
import hmac
from datetime import timedelta
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError, VerificationError, InvalidHashError
from jose import jwt

from .config import settings
from .models import utcnow

ALGORITHM = "HS256"

ph = PasswordHasher()

# Hashes imported from the previous deployment: scrypt$1$<hex salt>$<hex key>
LEGACY_SCRYPT_TAG = "scrypt"
LEGACY_SCRYPT_PARAMS = {"n": 16384, "r": 8, "p": 1, "dklen": 64}


def hash_password(password: str) -> str:
    return ph.hash(password)


def _verify_legacy_scrypt(password: str, stored: str) -> bool:
    parts = stored.split("$")
    if len(parts) != 4 or parts[0] != LEGACY_SCRYPT_TAG:
        return False
    _, _version, salt, expected_hex = parts
    try:
        expected = bytes.fromhex(expected_hex)
        derived = hashlib.scrypt(password.encode("utf-8"), salt=salt.encode("utf-8"), **LEGACY_SCRYPT_PARAMS)
    except ValueError:
        return False
    return hmac.compare_digest(derived, expected)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Check a password against a stored hash. Malformed hashes never verify."""
    if not isinstance(plain_password, str) or not isinstance(hashed_password, str) or not hashed_password:
        return False
    if hashed_password.startswith(LEGACY_SCRYPT_TAG + "$"):
        return _verify_legacy_scrypt(plain_password, hashed_password)
    try:
        return ph.verify(hashed_password, plain_password)
    except (VerifyMismatchError, VerificationError, InvalidHashError, UnicodeEncodeError):
        return False


def password_needs_rehash(hashed_password: str) -> bool:
    if hashed_password.startswith(LEGACY_SCRYPT_TAG + "$"):
        return True
    try:
        return ph.check_needs_rehash(hashed_password)
    except InvalidHashError:
        return True


def create_access_token(subject, role: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": str(subject), "role": role, "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Return the token claims; raises jose.JWTError on a bad or expired token."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
