"""Account routes: registration, password login and Google sign-in."""

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from services.catalog_api import config
from services.catalog_api.db import DatabaseConnection, get_db
from services.catalog_api.models import Credentials, GoogleLoginRequest
from services.catalog_api.security import (
    create_token,
    get_current_user,
    hash_password,
    public_user,
    random_password_hash,
    verify_password,
)
from services.common.runtime_utils import build_http_client

log = logging.getLogger("catalog-api")

router = APIRouter(prefix="/api/users", tags=["users"])

GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


def _require_credentials(req: Credentials) -> tuple[str, str]:
    username = (req.username or "").strip()
    if not username or not req.password:
        raise HTTPException(status_code=400, detail="Username and password required")
    return username, req.password


def _find_user(db: DatabaseConnection, username: str) -> Optional[dict]:
    return db.fetch_one("SELECT * FROM users WHERE username = %s", (username,))


@router.get("", response_class=PlainTextResponse)
def list_users_placeholder():
    return "respond with a resource"


@router.get("/me")
def me(user: dict = Depends(get_current_user), db: DatabaseConnection = Depends(get_db)):
    row = db.fetch_one(
        "SELECT id, username, is_admin, created_at FROM users WHERE id = %s",
        (user["id"],),
    )
    if not row:
        raise HTTPException(status_code=404, detail="User not found")
    return row


@router.post("/register", status_code=201)
def register(req: Credentials, db: DatabaseConnection = Depends(get_db)):
    username, password = _require_credentials(req)

    if _find_user(db, username):
        raise HTTPException(status_code=409, detail="User already exists")

    db.fetch_one(
        "INSERT INTO users (username, password) VALUES (%s, %s) RETURNING id",
        (username, hash_password(password)),
    )
    db.commit()
    log.info(f"Registered user {username}")
    return {"message": "User registered"}


@router.post("/login")
def login(req: Credentials, db: DatabaseConnection = Depends(get_db)):
    username, password = _require_credentials(req)

    user = _find_user(db, username)
    if not user or not verify_password(password, user["password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return {"token": create_token(user)}


# ── Google sign-in ──────────────────────────────────────────────────

def _google_client() -> httpx.Client:
    return build_http_client()


def _is_verified(value) -> bool:
    return value is True or str(value).lower() == "true"


def resolve_google_email(req: GoogleLoginRequest) -> str:
    """
    Work out which Google account is signing in.

    ID tokens are checked with Google's tokeninfo endpoint (and the audience
    matched against GOOGLE_CLIENT_ID when configured); access tokens are
    exchanged at the userinfo endpoint. A bare email is only accepted when
    GOOGLE_TRUST_CLIENT_EMAIL is enabled.
    """
    if req.id_token or req.access_token:
        with _google_client() as client:
            try:
                if req.id_token:
                    response = client.get(GOOGLE_TOKENINFO_URL, params={"id_token": req.id_token})
                else:
                    response = client.get(
                        GOOGLE_USERINFO_URL,
                        headers={"Authorization": f"Bearer {req.access_token}"},
                    )
            except httpx.HTTPError as e:
                log.error(f"[Google Login] Identity lookup failed: {e}")
                raise HTTPException(status_code=502, detail="Google identity service unavailable")

        if response.status_code != 200:
            raise HTTPException(status_code=401, detail="Invalid Google token")
        info = response.json()
        if req.id_token and config.GOOGLE_CLIENT_ID and info.get("aud") != config.GOOGLE_CLIENT_ID:
            raise HTTPException(status_code=401, detail="Google token was issued for another client")
        email = info.get("email")
        if not email or not _is_verified(info.get("email_verified")):
            raise HTTPException(status_code=401, detail="Google account email is not verified")
        return email.strip().lower()

    if config.GOOGLE_TRUST_CLIENT_EMAIL and req.email:
        return req.email.strip().lower()
    raise HTTPException(status_code=401, detail="A Google ID token or access token is required")


@router.post("/google-login")
def google_login(req: GoogleLoginRequest, db: DatabaseConnection = Depends(get_db)):
    if not req.id_token and not req.access_token and not req.email:
        raise HTTPException(status_code=400, detail="Token or email required for Google login")

    username = resolve_google_email(req)
    user = _find_user(db, username)
    if user is None:
        log.info(f"[Google Login] Creating user {username}")
        user = db.fetch_one(
            "INSERT INTO users (username, password, is_admin) VALUES (%s, %s, %s) "
            "RETURNING id, username, is_admin",
            (username, random_password_hash(), False),
        )
        db.commit()
    else:
        log.info(f"[Google Login] Existing user {user['id']}")

    user = public_user(user)
    return {
        "token": create_token(user),
        "user": {
            "id": user["id"],
            "username": user["username"],
            "email": username,
            "is_admin": bool(user.get("is_admin")),
        },
    }
