"""
Object storage adapters.

Movie posters and files live in Wasabi or Cloudflare R2 (both S3-compatible,
driven through boto3). Music can additionally be served from an Oracle
Object Storage pre-authenticated request (PAR): a base URL that grants
GET and PUT on every key below it, so no signing is needed.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Iterable, Optional
from urllib.parse import quote, unquote, urlsplit

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import HTTPException, UploadFile

from services.catalog_api import config
from services.common.logging_utils import log_timing

logger = logging.getLogger("catalog-api.storage")

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._() -]+")

VIDEO_TYPES = {"video/mp4", "video/avi", "video/quicktime", "video/x-matroska", "video/webm"}
AUDIO_TYPES = {
    "audio/mpeg",
    "audio/mp4",
    "audio/aac",
    "audio/ogg",
    "audio/webm",
    "audio/wav",
    "audio/x-wav",
}


class StorageNotConfiguredError(RuntimeError):
    """The requested provider is missing credentials or bucket settings."""


class StorageError(RuntimeError):
    """A storage provider call failed."""


# ════════════════════════════════════════════════════════════════════
# S3-compatible stores (Wasabi, Cloudflare R2)
# ════════════════════════════════════════════════════════════════════

class S3ObjectStore:
    """A single bucket on an S3-compatible endpoint."""

    def __init__(
        self,
        name: str,
        *,
        bucket: str,
        endpoint: str,
        access_key: str,
        secret_key: str,
        region: str,
        public_base: Optional[str] = None,
        client: Any = None,
    ):
        self.name = name
        self.bucket = bucket
        self.endpoint = endpoint.rstrip("/")
        self.public_base = (public_base or f"{self.endpoint}/{bucket}").rstrip("/")
        self.client = client or boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )

    def __repr__(self) -> str:
        return f"S3ObjectStore(name={self.name!r}, bucket={self.bucket!r})"

    def public_url(self, key: str) -> str:
        return f"{self.public_base}/{quote(key, safe='/')}"

    def key_for_url(self, url: Optional[str]) -> Optional[str]:
        """
        Recover the object key from a stored URL.

        Accepts URLs under the public base, path-style URLs on the endpoint
        (``/<bucket>/<key>``) and bare keys. Returns None for URLs that point
        somewhere else.
        """
        if not url:
            return None
        if url.startswith(self.public_base + "/"):
            return unquote(url[len(self.public_base) + 1:]) or None

        parts = urlsplit(url)
        if not parts.scheme:
            return url.lstrip("/") or None

        endpoint_host = urlsplit(self.endpoint).netloc
        bucket_prefix = f"/{self.bucket}/"
        if parts.netloc == endpoint_host and parts.path.startswith(bucket_prefix):
            return unquote(parts.path[len(bucket_prefix):]) or None
        # virtual-hosted style: <bucket>.<endpoint host>/<key>
        if parts.netloc == f"{self.bucket}.{endpoint_host}":
            return unquote(parts.path.lstrip("/")) or None
        return None

    @log_timing(logger, "S3 upload")
    def put(self, key: str, body: bytes, content_type: str, public: bool = True) -> str:
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
        }
        if public:
            params["ACL"] = "public-read"
        try:
            self.client.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"{self.name} upload failed: {e}") from e
        logger.info("Uploaded %s to %s (%d bytes)", key, self.name, len(body))
        return self.public_url(key)

    def get_bytes(self, key: str) -> tuple[bytes, str]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read(), response.get("ContentType", "application/octet-stream")
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"{self.name} download of {key} failed: {e}") from e

    def presign_get(self, key: str, ttl: Optional[int] = None) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl or config.SIGNED_URL_TTL,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"{self.name} signing failed: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"{self.name} delete of {key} failed: {e}") from e
        logger.info("Deleted %s from %s", key, self.name)

    def check(self) -> dict:
        """Verify credentials and bucket access."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            return {"provider": self.name, "bucket": self.bucket, "ok": False, "error": str(e)}
        return {"provider": self.name, "bucket": self.bucket, "ok": True}

    def put_cors(self, origins: Iterable[str]) -> dict:
        """Allow browsers on ``origins`` to GET/HEAD objects (video playback)."""
        rules = {
            "CORSRules": [
                {
                    "AllowedHeaders": ["*"],
                    "AllowedMethods": ["GET", "HEAD"],
                    "AllowedOrigins": list(origins),
                    "ExposeHeaders": ["ETag"],
                    "MaxAgeSeconds": 3000,
                }
            ]
        }
        try:
            self.client.put_bucket_cors(Bucket=self.bucket, CORSConfiguration=rules)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"{self.name} CORS update failed: {e}") from e
        return rules


# ════════════════════════════════════════════════════════════════════
# Oracle pre-authenticated request
# ════════════════════════════════════════════════════════════════════

@dataclass
class OracleParStore:
    """Bucket access through an Oracle PAR base URL ending in ``/o/``."""

    base_url: str
    name: str = "oracle"

    def __post_init__(self):
        if not self.base_url.endswith("/"):
            self.base_url += "/"

    def object_url(self, key: str) -> str:
        return f"{self.base_url}{quote(key, safe='/')}"

    def diagnose(self, client: httpx.Client, key: Optional[str] = None) -> dict:
        """PUT a small object and classify the response."""
        key = key or f"music/diagnostics/ping_{int(time.time() * 1000)}.txt"
        url = self.object_url(key)
        body = b"ping"
        try:
            response = client.put(url, content=body, headers={"Content-Type": "text/plain"})
            result = {
                "status": response.status_code,
                "headers": dict(response.headers),
                "body": response.text[:2000],
            }
        except httpx.HTTPError as e:
            result = {"error": str(e)}
        return {
            "key": key,
            "upload_url": url,
            "result": result,
            "diagnosis": classify_par_result(result),
        }


def classify_par_result(result: dict) -> str:
    if result.get("error"):
        return f"network_error: {result['error']}"
    status = result.get("status") or 0
    if 200 <= status < 300:
        return "ok"
    if status == 403:
        return "forbidden (PAR expired or invalid)"
    if status == 405:
        return "method_not_allowed (PAR lacks write permissions)"
    if status == 400:
        return "bad_request (URL or headers)"
    return "unknown"


# ════════════════════════════════════════════════════════════════════
# Factories
# ════════════════════════════════════════════════════════════════════

_stores: dict[str, Any] = {}


def _missing(pairs: dict[str, str]) -> list[str]:
    return [name for name, value in pairs.items() if not value]


def wasabi_store() -> S3ObjectStore:
    store = _stores.get("wasabi")
    if store is not None:
        return store
    missing = _missing({
        "WASABI_BUCKET_NAME": config.WASABI_BUCKET_NAME,
        "WASABI_ACCESS_KEY_ID": config.WASABI_ACCESS_KEY_ID,
        "WASABI_SECRET_ACCESS_KEY": config.WASABI_SECRET_ACCESS_KEY,
        "WASABI_ENDPOINT": config.WASABI_ENDPOINT,
    })
    if missing:
        raise StorageNotConfiguredError(f"Wasabi configuration is missing: {', '.join(missing)}")
    store = S3ObjectStore(
        "wasabi",
        bucket=config.WASABI_BUCKET_NAME,
        endpoint=config.WASABI_ENDPOINT,
        access_key=config.WASABI_ACCESS_KEY_ID,
        secret_key=config.WASABI_SECRET_ACCESS_KEY,
        region=config.WASABI_REGION,
    )
    _stores["wasabi"] = store
    return store


def r2_store() -> S3ObjectStore:
    store = _stores.get("r2")
    if store is not None:
        return store
    missing = _missing({
        "CLOUDFLARE_R2_BUCKET_NAME": config.R2_BUCKET_NAME,
        "CLOUDFLARE_R2_ACCESS_KEY_ID": config.R2_ACCESS_KEY_ID,
        "CLOUDFLARE_R2_SECRET_ACCESS_KEY": config.R2_SECRET_ACCESS_KEY,
        "CLOUDFLARE_R2_ENDPOINT": config.R2_ENDPOINT,
    })
    if missing:
        raise StorageNotConfiguredError(f"Cloudflare R2 configuration is missing: {', '.join(missing)}")
    store = S3ObjectStore(
        "r2",
        bucket=config.R2_BUCKET_NAME,
        endpoint=config.R2_ENDPOINT,
        access_key=config.R2_ACCESS_KEY_ID,
        secret_key=config.R2_SECRET_ACCESS_KEY,
        region="auto",
        public_base=config.R2_PUBLIC_URL or None,
    )
    _stores["r2"] = store
    return store


def store_for(provider: str) -> S3ObjectStore:
    if provider == "wasabi":
        return wasabi_store()
    if provider == "r2":
        return r2_store()
    raise StorageNotConfiguredError(f"Unknown storage provider: {provider}")


def movie_store() -> S3ObjectStore:
    """Store holding movie posters and video files."""
    return store_for(config.MOVIE_STORAGE_PROVIDER)


def music_store() -> S3ObjectStore:
    return r2_store()


def oracle_store() -> Optional[OracleParStore]:
    if not config.ORACLE_MUSIC_BASE_URL:
        return None
    return OracleParStore(config.ORACLE_MUSIC_BASE_URL)


def reset_stores() -> None:
    _stores.clear()


# ════════════════════════════════════════════════════════════════════
# Keys & upload validation
# ════════════════════════════════════════════════════════════════════

def safe_filename(filename: Optional[str]) -> str:
    name = (filename or "upload").replace("\\", "/").rsplit("/", 1)[-1]
    name = _SAFE_NAME.sub("_", name).strip(" .")
    return name or "upload"


def _millis() -> int:
    return int(time.time() * 1000)


def build_object_key(prefix: str, owner: Any, filename: Optional[str]) -> str:
    """``<prefix>/<owner>_<millis>_<filename>``, used for movie assets."""
    return f"{prefix}/{owner}_{_millis()}_{safe_filename(filename)}"


def music_track_key(artist_id: Any, filename: Optional[str], index: Optional[int] = None) -> str:
    stamp = f"{_millis()}_{index}" if index is not None else str(_millis())
    return f"music/tracks/{artist_id or 'unknown'}/{stamp}_{safe_filename(filename)}"


def music_artist_image_key(artist_id: Any, filename: Optional[str]) -> str:
    owner = f"{artist_id}/" if artist_id else ""
    return f"music/artists/{owner}{_millis()}_{safe_filename(filename)}"


@dataclass
class ValidatedUpload:
    filename: str
    content_type: str
    body: bytes

    @property
    def size(self) -> int:
        return len(self.body)


def validate_upload(
    upload: Optional[UploadFile],
    *,
    kind: str,
    max_mb: int,
    allowed_types: Optional[set[str]] = None,
    type_prefix: Optional[str] = None,
    type_error: str = "Invalid file type",
) -> ValidatedUpload:
    """Read an upload into memory, enforcing MIME type and size limits."""
    if upload is None or not upload.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    content_type = (upload.content_type or "").lower()
    if allowed_types is not None and content_type not in allowed_types:
        raise HTTPException(status_code=400, detail=type_error)
    if type_prefix is not None and not content_type.startswith(type_prefix):
        raise HTTPException(status_code=400, detail=type_error)

    max_bytes = max_mb * 1024 * 1024
    body = upload.file.read(max_bytes + 1)
    if len(body) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {max_mb}MB for {kind}.",
        )
    return ValidatedUpload(filename=upload.filename, content_type=content_type, body=body)
