"""Password hashing, JWT issuance and the auth dependencies used by routers."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.catalog_api import config
from services.catalog_api.db import DatabaseConnection, get_db

logger = logging.getLogger("catalog-api.auth")

BCRYPT_MAX_BYTES = 72

_bearer = HTTPBearer(auto_error=False)


class TokenError(Exception):
    """Raised when a bearer token cannot be verified."""


def hash_password(password: str) -> str:
    pw = password.encode("utf-8")
    if len(pw) > BCRYPT_MAX_BYTES:
        raise HTTPException(status_code=400, detail="Password too long (max 72 bytes)")
    return bcrypt.hashpw(pw, bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    pw = password.encode("utf-8")
    if not hashed or len(pw) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(pw, hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def random_password_hash() -> str:
    """Hash for accounts that never log in with a password (Google sign-in)."""
    return hash_password(secrets.token_urlsafe(24))


def generate_secret() -> str:
    return secrets.token_hex(64)


def _require_secret() -> str:
    if not config.JWT_SECRET:
        logger.error("JWT_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Authentication is not configured")
    return config.JWT_SECRET


def create_token(user: dict, now: Optional[datetime] = None) -> str:
    """Sign a token carrying the user's id, username and admin flag."""
    issued = now or datetime.now(timezone.utc)
    payload = {
        "id": user["id"],
        "username": user["username"],
        "is_admin": bool(user.get("is_admin")),
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(days=config.JWT_EXPIRES_DAYS)).timestamp()),
    }
    return jwt.encode(payload, _require_secret(), algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        claims = jwt.decode(token, _require_secret(), algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise TokenError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise TokenError("Invalid token") from e
    if "id" not in claims:
        raise TokenError("Token has no subject")
    return claims


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> dict:
    """Claims of the caller; 401 without a bearer token, 403 when it does not verify."""
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        return decode_token(creds.credentials)
    except TokenError as e:
        logger.info("JWT verification failed: %s", e)
        raise HTTPException(status_code=403, detail=str(e))


def require_admin(
    user: dict = Depends(get_current_user),
    db: DatabaseConnection = Depends(get_db),
) -> dict:
    """Admin rights are read from the users table, not trusted from the token."""
    row = db.fetch_one("SELECT is_admin FROM users WHERE id = %s", (user["id"],))
    if not row or not row.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def public_user(row: dict[str, Any]) -> dict[str, Any]:
    """Drop the password hash from a users row."""
    return {k: v for k, v in row.items() if k != "password"}
