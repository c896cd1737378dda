"""
Bearer token helpers.

The API trusts HS256 JWTs carrying a ``user_id`` claim. Sign-up and sign-in
happen elsewhere; this module only mints tokens (tests, admin tooling) and
reads them back.
"""

import os
import jwt
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("JWT_SECRET_KEY") or os.getenv("SECRET_KEY")
if not SECRET_KEY:
    logger.critical("JWT_SECRET_KEY (or SECRET_KEY) is not set")
    raise RuntimeError("JWT_SECRET_KEY environment variable is required. Set JWT_SECRET_KEY or SECRET_KEY.")
ALGORITHM = "HS256"
TOKEN_TTL = timedelta(minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 30)))


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign ``data`` (user_id, email) into a token expiring after
    ``expires_delta`` (default ACCESS_TOKEN_EXPIRE_MINUTES).
    """
    claims = dict(data)
    claims["exp"] = datetime.now(timezone.utc) + (expires_delta or TOKEN_TTL)
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Claims of a valid token, or None for an expired/forged/garbled one."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except jwt.InvalidTokenError:
        return None
