"""
Password hashing and opaque credential utilities.

Follows Layer 1 rules:
- Always use a strong hashing algorithm (bcrypt) for passwords and client secrets
- NEVER log plaintext passwords, secrets, hashes or raw tokens
- Opaque tokens are stored only as digests
"""
from __future__ import annotations
import base64
import hashlib
import secrets
from functools import lru_cache
import bcrypt
from microauth.core.config import settings


def hash_password(plain: str) -> str:
    """
    Hash a plaintext password (or client secret) using bcrypt.

    Args:
        plain: Plaintext password

    Returns:
        Hashed password string
    """
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)).decode()


def verify_password(plain: str, hashed: str | None) -> bool:
    """
    Verify a plaintext password against a hash.

    bcrypt.checkpw compares in constant time. When there is no stored hash
    (unknown user/client) a dummy hash is checked so both paths cost the same.

    Args:
        plain: Plaintext password to verify
        hashed: Hashed password to compare against, or None

    Returns:
        True if password matches, False otherwise
    """
    try:
        if not hashed:
            bcrypt.checkpw(plain.encode(), _dummy_hash())
            return False
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        # Malformed stored hash, or a password bcrypt refuses (over 72 bytes)
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> bytes:
    return bcrypt.hashpw(secrets.token_bytes(16), bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS))


def _urlsafe(nbytes: int) -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(nbytes)).decode("ascii").rstrip("=")


def generate_secure_id(prefix: str) -> str:
    """Random identifier such as ``cli_...`` or ``tok_...`` (128 bits)."""
    return f"{prefix}{_urlsafe(16)}"


def generate_secure_token() -> str:
    """Opaque bearer credential (256 bits, base64url without padding)."""
    return _urlsafe(32)


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest used as the lookup key for opaque tokens."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()
