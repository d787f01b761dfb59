"""
auth/tokens.py -- JWT, password hashing, and opaque token utilities.

Security design decisions:
  JWT: python-jose with HS256. Access tokens carry sub (user id as a string),
       email, sid (session id), jti, iat and exp. decode_access_token() checks
       signature and claim shape only; expiry is compared by the caller
       against its injected clock so tests can move time without sleeping.

  Passwords: bcrypt, used directly. Inputs are truncated to bcrypt's 72-byte
       limit explicitly, identically for hash and verify, because bcrypt 4.x+
       rejects longer inputs. A per-cost-factor dummy hash enables timing
       equalization in authenticate_user() [C1].

  Refresh and one-time tokens: secrets module output, at least 256 bits of
       entropy. Stores keep HMAC-SHA256(SECRET_KEY, token) so lookup is O(1)
       and a leaked database does not yield usable tokens. bcrypt's slowness
       is unnecessary for high-entropy secrets.

  SECRET_KEY: passed in by the caller (from core.config.Settings). Nothing in
       this module reads configuration on its own.

Layer rule: no imports from api/, rbac/, or cache/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import uuid
from datetime import datetime, timedelta
from functools import lru_cache
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("gatehouse.auth")

_ALGORITHM = "HS256"
_BCRYPT_MAX_BYTES = 72
_REQUIRED_CLAIMS = ("sub", "sid", "jti", "exp")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def _password_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is treated as a mismatch.
    """
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


@lru_cache(maxsize=8)
def _dummy_hash(rounds: int) -> str:
    # Same cost factor as real hashes, so a miss costs what a hit costs [C1].
    return hash_password("gatehouse_timing_dummy", rounds=rounds)


def authenticate_user(store: UserStore, email: str, password: str, rounds: int = 12) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against the dummy hash (same cost)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure (including inactive users).
    """
    user = store.get_by_email(email)
    if user is None:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _dummy_hash(rounds))
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(
    user_id: int,
    email: str,
    session_id: int,
    secret_key: str,
    issued_at: datetime,
    expire_seconds: int,
) -> tuple[str, datetime]:
    """Encode a signed access token and return it with its expiry time.

    sub is serialized as a string; python-jose rejects non-string subjects
    on decode.
    """
    expires_at = issued_at + timedelta(seconds=expire_seconds)
    payload = {
        "sub": str(user_id),
        "email": email,
        "sid": session_id,
        "jti": uuid.uuid4().hex,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, secret_key, algorithm=_ALGORITHM), expires_at


def decode_access_token(token: str, secret_key: str) -> dict | None:
    """Verify the signature and claim shape. Returns the payload or None.

    Expiry is deliberately not checked here (verify_exp=False); callers
    compare payload["exp"] against their clock.
    """
    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        return None
    if any(claim not in payload for claim in _REQUIRED_CLAIMS):
        return None
    if not str(payload["sub"]).isdigit():
        return None
    return payload


def claims_user_id(payload: dict) -> int:
    return int(payload["sub"])


# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return a URL-safe refresh token with 384 bits of entropy."""
    return secrets.token_urlsafe(48)


def generate_one_time_token() -> str:
    """Return a 64-hex-char token for email verification and password reset links."""
    return secrets.token_hex(32)


def hash_token(raw_token: str, secret_key: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string.

    Deterministic, so stores can look tokens up through a UNIQUE index.
    """
    return hmac.new(
        secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------

REFRESH_COOKIE = "refresh_token"


def set_refresh_cookie(response, token: str, max_age: int, secure: bool) -> None:
    """Write the refresh token as an httpOnly cookie scoped to the auth routes.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    """
    response.set_cookie(
        REFRESH_COOKIE,
        value=token,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=max_age,
        path="/api/v1/auth",
    )


def clear_refresh_cookie(response) -> None:
    response.delete_cookie(REFRESH_COOKIE, path="/api/v1/auth")
