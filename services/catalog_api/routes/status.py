"""Service status, health and diagnostics routes."""

import logging
from datetime import datetime, timezone

import psycopg2
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from services.catalog_api import config, db as database
from services.catalog_api.security import get_current_user

log = logging.getLogger("catalog-api")

router = APIRouter()

ENDPOINTS = {
    "test": "/api/test",
    "movies": "/api/movies",
    "users": "/api/users",
    "reviews": "/api/reviews",
    "music": "/api/music",
    "radio": "/api/radio",
}


def _presence(value: str) -> str:
    return "set" if value else "not set"


def _environment_report() -> dict:
    return {
        "nodeEnv": config.APP_ENV or "not set",
        "databaseUrl": _presence(config.DATABASE_URL),
        "frontendUrl": config.FRONTEND_URL or "not set",
        "movieStorage": config.MOVIE_STORAGE_PROVIDER,
        "wasabiBucket": config.WASABI_BUCKET_NAME or "not set",
        "r2Bucket": config.R2_BUCKET_NAME or "not set",
        "oracleMusicBase": _presence(config.ORACLE_MUSIC_BASE_URL),
        "jwtSecret": _presence(config.JWT_SECRET),
    }


@router.get("/")
def root():
    return {
        "message": "Movie Web API is running",
        "version": config.API_VERSION,
        "endpoints": ENDPOINTS,
    }


@router.get("/health")
def health():
    return {"status": "ok", "service": config.SERVICE_NAME}


@router.get("/api")
def api_status():
    return {
        "message": "Movie Web API is running",
        "version": config.API_VERSION,
        "storage": config.storage_provider_label(),
        "endpoints": ENDPOINTS,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/api/protected")
def protected(user: dict = Depends(get_current_user)):
    return {"message": "This is a protected route", "user": user}


@router.get("/api/test")
def backend_test():
    """Check database connectivity and report which settings are present."""
    try:
        pool, conn = database.checkout_connection()
        try:
            current_time = database.server_time(database.DatabaseConnection(conn))
        finally:
            database.release_connection(pool, conn)
    except (HTTPException, psycopg2.Error) as e:
        message = e.detail if isinstance(e, HTTPException) else str(e).strip()
        log.error(f"Backend test failed: {message}")
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "message": "Backend test failed",
                "error": message,
                "environment": _environment_report(),
            },
        )

    return {
        "status": "success",
        "message": "Backend is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": {
            "connected": True,
            "currentTime": current_time.isoformat() if hasattr(current_time, "isoformat") else current_time,
        },
        "environment": _environment_report(),
    }
