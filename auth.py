from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from constants import BCRYPT_ROUNDS, JWT_ALGORITHM, JWT_EXPIRY_SECONDS, JWT_SECRET
from errors import AuthError
from logging_config import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        logger.warning("Password check against a malformed hash")
        return False


def issue_token(user_id: str, expires_in: int = JWT_EXPIRY_SECONDS) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def validate_token(token: Optional[str]) -> str:
    """Return the user id the token was issued for, or raise AuthError."""
    if not token:
        raise AuthError("Access token required")
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM], options={"require": ["sub", "exp"]})
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        raise AuthError("Access token expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected invalid access token: {e}")
        raise AuthError("Invalid access token")
    return claims["sub"]


async def current_user_id(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
    return validate_token(credentials.credentials if credentials else None)
