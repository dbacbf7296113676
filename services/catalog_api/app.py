"""
Streaming Catalog API (FastAPI service).

Serves the movie and music catalog: accounts with JWT auth, movies and
moderated reviews, artists/playlists/tracks, and radio stations. Records
live in PostgreSQL; posters, videos and audio live in S3-compatible
object storage (Wasabi or Cloudflare R2) or behind an Oracle Object
Storage pre-authenticated request. Clients never receive storage
credentials, only public or short-lived signed URLs.
"""

import psycopg2
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from services.catalog_api import config, db, stream_cache
from services.catalog_api.routes import movies, music, radio, reviews, status, users
from services.catalog_api.storage import StorageError, StorageNotConfiguredError
from services.common.logging_utils import access_log_middleware, configure_service_logger, mask_dsn

# ── Logging ─────────────────────────────────────────────────────────
log = configure_service_logger("catalog-api")

# ── FastAPI app ─────────────────────────────────────────────────────
app = FastAPI(title="Streaming Catalog API", version=config.API_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_origin_regex=config.CORS_ORIGIN_REGEX if config.IS_PRODUCTION else None,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(access_log_middleware(log))

for module in (status, users, movies, reviews, music, radio):
    app.include_router(module.router)


# ════════════════════════════════════════════════════════════════════
# Error responses
# ════════════════════════════════════════════════════════════════════

@app.exception_handler(HTTPException)
async def http_error(request: Request, exc: HTTPException):
    """Errors are returned as ``{"message": ...}``; dict details pass through as-is."""
    content = exc.detail if isinstance(exc.detail, dict) else {"message": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request", "error": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(psycopg2.Error)
async def database_error(request: Request, exc: psycopg2.Error):
    log.error(f"Database error on {request.method} {request.url.path}: {str(exc).strip()}")
    return JSONResponse(status_code=500, content={"message": "Server error", "error": str(exc).strip()})


@app.exception_handler(StorageNotConfiguredError)
async def storage_not_configured(request: Request, exc: StorageNotConfiguredError):
    log.error(f"Storage not configured for {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "message": "File storage service not configured. Please contact administrator.",
            "error": str(exc),
        },
    )


@app.exception_handler(StorageError)
async def storage_error(request: Request, exc: StorageError):
    log.error(f"Storage error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"message": "Storage operation failed", "error": str(exc)})


# ════════════════════════════════════════════════════════════════════
# Lifecycle
# ════════════════════════════════════════════════════════════════════

@app.on_event("startup")
async def startup():
    log.info(f"Streaming Catalog API starting up (env={config.APP_ENV})")
    log.info(
        f"Database: {mask_dsn(config.DATABASE_URL)}, "
        f"movie storage: {config.storage_provider_label()}, "
        f"oracle music base: {'set' if config.ORACLE_MUSIC_BASE_URL else 'not set'}, "
        f"signed URL TTL: {config.SIGNED_URL_TTL}s"
    )
    if not config.DATABASE_URL:
        log.error("DATABASE_URL environment variable is not set; database routes will return 503")
    if not config.JWT_SECRET:
        log.error("JWT_SECRET is not set; login and protected routes will fail")


@app.on_event("shutdown")
async def shutdown():
    stream_cache.clear()
    db.close_pool()
    log.info("Streaming Catalog API shutting down")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
