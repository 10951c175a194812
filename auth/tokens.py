"""
auth/tokens.py -- JWT and password hashing utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, email (as sub) and role. Verification returns None on any
       failure -- the route layer turns that into a 401.

  Passwords: bcrypt used directly (no passlib wrapper). The cost factor comes
       from Settings.bcrypt_salt_rounds and is passed in by the caller, so the
       core never reaches for global config. dummy_hash() enables timing
       equalization in the local login path so response time does not reveal
       whether an email exists [C1].

The Settings object is always passed in explicitly. Nothing here reads the
environment.

Layer rule: no imports from api/, directory/ or activity/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache

import bcrypt
from jose import JWTError, jwt

from core.config import Settings

logger = logging.getLogger("authenticator.auth")

_ALGORITHM = "HS256"

# bcrypt 5 rejects longer input and earlier releases truncate it silently.
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def password_too_long(plain: str) -> bool:
    """True if plain is longer than bcrypt accepts, measured in UTF-8 bytes."""
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Callers reject input over MAX_PASSWORD_BYTES first (see password_too_long);
    bcrypt raises ValueError for it.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the row, or a password longer than bcrypt accepts.
        return False


@lru_cache(maxsize=8)
def dummy_hash(rounds: int) -> str:
    """Hash used to burn the same bcrypt work when there is no real hash to check [C1].

    Cached per cost factor so only the first failed lookup pays for hashing it.
    """
    return hash_password("authenticator_timing_dummy", rounds)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(settings: Settings, user_id: int, email: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT carrying user identity.

    Args:
        settings:       Supplies the signing key and default lifetime.
        user_id:        Numeric user ID stored in the DB.
        email:          Stored as the JWT subject claim.
        role:           "user", "admin" or "superadmin".
        expire_seconds: Token lifetime. 0 (default) uses settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": email,
        "user_id": user_id,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(settings: Settings, token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload or "role" not in payload:
        return None
    return payload
