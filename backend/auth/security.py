"""
Password hashing and JWT access tokens.

Settings come from the environment and are validated once at import:
JWT_SECRET_KEY (mandatory when ENVIRONMENT is production or staging),
JWT_ALGORITHM (HMAC family only) and ACCESS_TOKEN_EXPIRE_MINUTES.
"""

import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("HS256", "HS384", "HS512")
DEFAULT_EXPIRE_MINUTES = 60
MAX_EXPIRE_MINUTES = 24 * 60


def is_production_like() -> bool:
    """True when ENVIRONMENT names a production or staging deployment."""
    return os.environ.get("ENVIRONMENT", "development").lower() in ("production", "staging")


def _load_secret_key() -> str:
    key = os.environ.get("JWT_SECRET_KEY")
    if key:
        return key
    if is_production_like():
        raise ValueError(
            "JWT_SECRET_KEY must be set outside development. "
            "Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
        )
    logger.warning(
        "⚠️  JWT_SECRET_KEY is not set; signing tokens with a throwaway key. "
        "Tokens will not survive a restart."
    )
    return "dev-insecure-key-" + secrets.token_urlsafe(32)


def _load_algorithm() -> str:
    algorithm = os.environ.get("JWT_ALGORITHM", "HS256")
    if algorithm in SUPPORTED_ALGORITHMS:
        return algorithm
    logger.warning(f"⚠️  JWT_ALGORITHM={algorithm} is not one of {', '.join(SUPPORTED_ALGORITHMS)}; using HS256")
    return "HS256"


def _load_expire_minutes() -> int:
    raw = os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", str(DEFAULT_EXPIRE_MINUTES))
    try:
        minutes = int(raw)
    except ValueError:
        logger.warning(f"⚠️  ACCESS_TOKEN_EXPIRE_MINUTES={raw!r} is not a number; using {DEFAULT_EXPIRE_MINUTES}")
        return DEFAULT_EXPIRE_MINUTES
    if not 1 <= minutes <= MAX_EXPIRE_MINUTES:
        logger.warning(
            f"⚠️  ACCESS_TOKEN_EXPIRE_MINUTES={minutes} must be between 1 and {MAX_EXPIRE_MINUTES}; "
            f"using {DEFAULT_EXPIRE_MINUTES}"
        )
        return DEFAULT_EXPIRE_MINUTES
    return minutes


# Argon2id
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

SECRET_KEY = _load_secret_key()
ALGORITHM = _load_algorithm()
ACCESS_TOKEN_EXPIRE_MINUTES = _load_expire_minutes()


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    is_valid = pwd_context.verify(plain_password, hashed_password)
    logger.debug(f"Password check {'passed' if is_valid else 'failed'}")
    return is_valid


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign an access token carrying `data` (usually sub, email and role).

    Example:
        >>> token = create_access_token({"sub": "1", "role": "admin"})
    """
    lifetime = expires_delta if expires_delta is not None else timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    expires_at = datetime.now(timezone.utc) + lifetime
    claims = {**data, "exp": expires_at, "type": "access"}
    logger.debug(f"Issuing access token for sub={data.get('sub')} until {expires_at}")
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Decoded claims of a valid, unexpired token, or None."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"Rejected JWT: {e}")
        return None
