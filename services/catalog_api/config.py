"""Environment configuration for the catalog API.

Values are read once at import, the same way the sidecar services read
their settings. Code should access them as ``config.NAME`` so tests can
monkeypatch individual values.
"""

from services.common.runtime_utils import env_bool, env_float, env_int, env_list, env_str

SERVICE_NAME = "catalog-api"
API_VERSION = "2.0.0"

# ── Runtime environment ─────────────────────────────────────────────
APP_ENV = (env_str("APP_ENV") or env_str("NODE_ENV", "development")).lower()
IS_PRODUCTION = APP_ENV == "production"
HOST = env_str("HOST", "0.0.0.0")
PORT = env_int("PORT", "5000")

# ── Database ────────────────────────────────────────────────────────
DATABASE_URL = env_str("DATABASE_URL")
DB_SSL_MODE = env_str("DB_SSL_MODE", "require" if IS_PRODUCTION else "prefer")
DB_POOL_MIN = env_int("DB_POOL_MIN", "1")
DB_POOL_MAX = env_int("DB_POOL_MAX", "10")
DB_CONNECT_TIMEOUT = env_int("DB_CONNECT_TIMEOUT", "10")
DB_POOL_WAIT_SECONDS = env_float("DB_POOL_WAIT_SECONDS", "30")

# ── Auth ────────────────────────────────────────────────────────────
JWT_SECRET = env_str("JWT_SECRET")
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_DAYS = env_int("JWT_EXPIRES_DAYS", "7")
BCRYPT_ROUNDS = env_int("BCRYPT_ROUNDS", "10")
GOOGLE_CLIENT_ID = env_str("GOOGLE_CLIENT_ID")
GOOGLE_TRUST_CLIENT_EMAIL = env_bool("GOOGLE_TRUST_CLIENT_EMAIL", False)

# ── CORS ────────────────────────────────────────────────────────────
FRONTEND_URL = env_str("FRONTEND_URL")
CORS_EXTRA_ORIGINS = env_list("CORS_EXTRA_ORIGINS")
CORS_ORIGIN_REGEX = env_str("CORS_ORIGIN_REGEX", r"https://.*\.vercel\.app")
DEV_FRONTEND_ORIGIN = "http://localhost:3000"

# ── Object storage ──────────────────────────────────────────────────
MOVIE_STORAGE_PROVIDER = env_str("MOVIE_STORAGE_PROVIDER", "r2").lower()

WASABI_ACCESS_KEY_ID = env_str("WASABI_ACCESS_KEY_ID")
WASABI_SECRET_ACCESS_KEY = env_str("WASABI_SECRET_ACCESS_KEY")
WASABI_REGION = env_str("WASABI_REGION", "us-east-1")
WASABI_ENDPOINT = env_str("WASABI_ENDPOINT").rstrip("/")
WASABI_BUCKET_NAME = env_str("WASABI_BUCKET_NAME")

R2_ENDPOINT = env_str("CLOUDFLARE_R2_ENDPOINT").rstrip("/")
R2_ACCESS_KEY_ID = env_str("CLOUDFLARE_R2_ACCESS_KEY_ID")
R2_SECRET_ACCESS_KEY = env_str("CLOUDFLARE_R2_SECRET_ACCESS_KEY")
R2_BUCKET_NAME = env_str("CLOUDFLARE_R2_BUCKET_NAME")
R2_PUBLIC_URL = env_str("CLOUDFLARE_R2_PUBLIC_URL").rstrip("/")

ORACLE_MUSIC_BASE_URL = env_str("ORACLE_MUSIC_BASE_URL")

SIGNED_URL_TTL = env_int("SIGNED_URL_TTL", "3600")
REDIS_URL = env_str("REDIS_URL")

# ── Upload limits (megabytes) ───────────────────────────────────────
POSTER_MAX_MB = env_int("POSTER_MAX_MB", "5")
MOVIE_MAX_MB = env_int("MOVIE_MAX_MB", "500")
AUDIO_MAX_MB = env_int("AUDIO_MAX_MB", "200")
IMAGE_MAX_MB = env_int("IMAGE_MAX_MB", "8")


def cors_origins() -> list[str]:
    """Explicit allowed origins for the current environment."""
    if not IS_PRODUCTION:
        return [DEV_FRONTEND_ORIGIN]
    origins = [FRONTEND_URL] if FRONTEND_URL else []
    origins.extend(CORS_EXTRA_ORIGINS)
    return origins


def storage_provider_label() -> str:
    labels = {"r2": "Cloudflare R2", "wasabi": "Wasabi"}
    return labels.get(MOVIE_STORAGE_PROVIDER, MOVIE_STORAGE_PROVIDER)
