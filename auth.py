"""Bearer token issuance and verification.

Tokens are HS256 JWTs carrying ``{id, is_librarian, iat, exp}``. The decoded
claims are trusted for the token's lifetime: no store lookup re-validates the
account, so a role or account change only takes effect once the old token
expires.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings, settings as default_settings
from errors import Unauthenticated
from user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, derived solely from a verified token."""

    user_id: str
    is_librarian: bool = False


def issue_token(user: User, settings: Optional[Settings] = None) -> str:
    settings = settings or default_settings
    now = datetime.now(timezone.utc)
    payload = {
        "id": user.id,
        "is_librarian": user.is_librarian,
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_expiration_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str, settings: Optional[Settings] = None) -> Identity:
    """Decode a token into an Identity; any defect fails closed with ``Unauthenticated``."""
    settings = settings or default_settings
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        raise Unauthenticated("Invalid token")
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected invalid token: {e.__class__.__name__}")
        raise Unauthenticated("Invalid token")

    user_id = payload.get("id")
    is_librarian = payload.get("is_librarian", False)
    if not isinstance(user_id, str) or not user_id or not isinstance(is_librarian, bool):
        raise Unauthenticated("Invalid token")
    return Identity(user_id=user_id, is_librarian=is_librarian)


# --- FastAPI dependency ---
bearer_scheme = HTTPBearer(auto_error=False)


def require_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> Identity:
    """Resolve the caller's Identity from ``Authorization: Bearer <token>``."""
    if credentials is None:
        if not request.headers.get("Authorization"):
            raise Unauthenticated("No authorization header")
        raise Unauthenticated("Invalid authorization header")
    return verify_token(credentials.credentials)
