"""
Signed-JWT codec shared by every service.

Follows Layer 1 rules:
- Sign tokens with a private key supplied by configuration (injected, never a module global)
- Accept exactly one HMAC algorithm; anything else in the header is rejected
- Expiry lives inside the signed claims and is checked on every decode
"""
from __future__ import annotations
import base64
import binascii
import time
from typing import Optional
import jwt
from pydantic import ValidationError as PydanticValidationError
from microauth.domain.models import Claims

HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")
_REQUIRED_CLAIMS = ["exp", "iat", "user_id", "email"]


def _canonical_signature(token: str) -> bool:
    """The signature segment must be the exact base64url encoding of its bytes."""
    parts = token.split(".")
    if len(parts) != 3:
        # Structural problems are reported by PyJWT
        return True
    segment = parts[2]
    try:
        raw = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    except (binascii.Error, ValueError):
        return False
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=") == segment


class TokenError(Exception):
    """Base class for codec failures; all of them are terminal for the caller."""


class VerificationError(TokenError):
    """Signature or algorithm does not match."""


class DecodeError(VerificationError):
    """Token is not a well-formed JWT or its payload is not a valid claim set."""


class ExpiredError(TokenError):
    """Signature is valid but the clock has reached ``exp``."""


class TokenCodec:
    """
    Encode/decode Claims as compact HMAC-signed JWTs.

    Args:
        secret: Signing key
        ttl_seconds: Default lifetime stamped into new tokens
        algorithm: Expected HMAC algorithm (HS256, HS384 or HS512)
    """

    def __init__(self, secret: str, ttl_seconds: int, algorithm: str = "HS256") -> None:
        if not secret:
            raise ValueError("JWT signing secret must not be empty")
        if algorithm not in HMAC_ALGORITHMS:
            raise ValueError(f"Unsupported JWT algorithm: {algorithm}")
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._secret = secret
        self.algorithm = algorithm
        self.ttl_seconds = ttl_seconds

    def stamp(self, claims: Claims, ttl: Optional[int] = None) -> Claims:
        """Return a copy of claims with ``iat`` = now and ``exp`` = now + ttl."""
        now = int(time.time())
        lifetime = self.ttl_seconds if ttl is None else ttl
        return claims.model_copy(update={"iat": now, "exp": now + lifetime})

    def encode(self, claims: Claims, ttl: Optional[int] = None) -> str:
        """Sign claims; claims without iat/exp are stamped first."""
        if claims.exp is None or claims.iat is None:
            claims = self.stamp(claims, ttl)
        payload = claims.model_dump(exclude_none=True)
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def decode(self, token: str) -> Claims:
        """
        Verify and parse a token.

        Raises:
            DecodeError: malformed token or claim set
            VerificationError: bad signature or unexpected algorithm
            ExpiredError: now >= exp
        """
        if not _canonical_signature(token):
            # Non-canonical trailing bits count as tampering
            raise VerificationError("Signature verification failed")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as exc:
            raise ExpiredError("Token has expired") from exc
        except jwt.InvalidSignatureError as exc:
            raise VerificationError("Signature verification failed") from exc
        except jwt.InvalidAlgorithmError as exc:
            raise VerificationError("Unexpected signing algorithm") from exc
        except (jwt.DecodeError, jwt.MissingRequiredClaimError) as exc:
            raise DecodeError("Malformed token") from exc
        except jwt.InvalidTokenError as exc:
            raise VerificationError("Invalid token") from exc

        try:
            return Claims.model_validate(payload)
        except PydanticValidationError as exc:
            raise DecodeError("Malformed claims") from exc
