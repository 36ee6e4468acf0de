"""
Bearer token authentication.

Tokens are HS256 JWTs issued by the AdGenius app backend. The user id is
read from the userId claim, falling back to the standard sub claim.

SECURITY:
- Signature and expiry are always verified
- Requests without a configured JWT_SECRET are rejected, never trusted
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Request

from adgenius.config import LicensingConfig, get_config
from adgenius.platform.errors import AuthenticationError

logger = logging.getLogger(__name__)

USER_ID_CLAIMS = ("userId", "sub")


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: str
    email: Optional[str] = None


def decode_token(token: str, config: Optional[LicensingConfig] = None) -> AuthenticatedUser:
    """
    Validate a bearer token and extract the user.

    Raises:
        AuthenticationError: secret missing, token invalid or expired, no user claim
    """
    config = config or get_config()
    if not config.jwt_secret:
        logger.error("JWT_SECRET not configured")
        raise AuthenticationError("Authentication is not configured")

    try:
        payload: Dict[str, Any] = jwt.decode(
            token,
            config.jwt_secret,
            algorithms=[config.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(f"Invalid token: {str(e)}")

    for claim in USER_ID_CLAIMS:
        value = payload.get(claim)
        if value:
            return AuthenticatedUser(user_id=str(value), email=payload.get("email"))
    raise AuthenticationError("Token has no user id")


def issue_token(user_id: str, config: Optional[LicensingConfig] = None, **claims: Any) -> str:
    """Sign a token for user_id (scripts and tests)."""
    config = config or get_config()
    if not config.jwt_secret:
        raise AuthenticationError("Authentication is not configured")
    payload = {"userId": user_id, **claims}
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_current_user(request: Request) -> AuthenticatedUser:
    """FastAPI dependency: the authenticated user of this request."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Missing bearer token")

    user = decode_token(token.strip())
    request.state.user_id = user.user_id
    return user
