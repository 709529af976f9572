"""Supabase JWT verification for marketplace users."""

import json
from enum import Enum
from functools import lru_cache
from typing import Any
from uuid import UUID

import jwt
from jwt import PyJWK

from src.core.config import get_settings
from src.schemas.auth import UserContext


class AuthErrorCode(str, Enum):
    """Authentication error codes."""

    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"


class AuthError(Exception):
    """Raised when a bearer token cannot be trusted."""

    def __init__(self, message: str, code: AuthErrorCode) -> None:
        self.message = message
        self.code = code
        super().__init__(message)


@lru_cache
def get_signing_key() -> Any:
    """Load the ES256 public key from the configured JWK."""
    try:
        jwk_data = json.loads(get_settings().supabase_signing_key_jwk)
    except json.JSONDecodeError as e:
        raise AuthError(f"Invalid signing key JWK format: {e}", AuthErrorCode.INVALID_TOKEN) from e
    return PyJWK.from_dict(jwk_data).key


def _role_claim(payload: dict[str, Any]) -> str | None:
    # Supabase puts the platform role in app_metadata; the top-level claim is
    # always "authenticated" for signed-in users.
    app_metadata = payload.get("app_metadata") or {}
    return app_metadata.get("role") or payload.get("role")


def decode_jwt(token: str) -> UserContext:
    """Verify a Supabase access token and return the user it identifies.

    Args:
        token: Encoded JWT from the Authorization header.

    Returns:
        UserContext: User id, email and platform role.

    Raises:
        AuthError: If the token is expired, signed by another key or malformed.
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            get_signing_key(),
            algorithms=["ES256"],
            options={"verify_aud": False, "require": ["exp", "iat", "sub"]},
        )
        return UserContext(user_id=UUID(payload["sub"]), email=payload.get("email"), role=_role_claim(payload))

    except AuthError:
        raise

    except jwt.ExpiredSignatureError as e:
        raise AuthError("Token has expired", AuthErrorCode.TOKEN_EXPIRED) from e

    except jwt.InvalidSignatureError as e:
        raise AuthError("Invalid token signature", AuthErrorCode.INVALID_SIGNATURE) from e

    except (jwt.PyJWTError, ValueError) as e:
        raise AuthError(f"Invalid token: {e}", AuthErrorCode.INVALID_TOKEN) from e
