"""
Music catalog routes: artists, playlists and tracks.

Track audio lives either behind the Oracle PAR base (when
ORACLE_MUSIC_BASE_URL is set, clients upload straight to it and we only
record metadata) or in the R2 bucket, in which case stream URLs are
presigned and cached.
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from psycopg2.errors import UniqueViolation

from services.catalog_api import config, stream_cache
from services.catalog_api.db import DatabaseConnection, get_db
from services.catalog_api.models import (
    AddTrackRequest,
    OraclePresignRequest,
    PlaylistCreate,
    TracksMetaRequest,
)
from services.catalog_api.security import require_admin
from services.catalog_api.storage import (
    AUDIO_TYPES,
    StorageError,
    StorageNotConfiguredError,
    music_artist_image_key,
    music_store,
    music_track_key,
    oracle_store,
    safe_filename,
    validate_upload,
)
from services.common.runtime_utils import build_http_client

log = logging.getLogger("catalog-api")

router = APIRouter(prefix="/api/music", tags=["music"])

MAX_ARTIST_PAGE = 50

_ARTIST_COLUMNS = "id, name, slug, image_url, created_at"
_TRACK_COLUMNS = "id, artist_id, title, duration_seconds, file_path, mime_type, size_bytes, release_date"

_INSERT_TRACK = (
    "INSERT INTO tracks (artist_id, title, duration_seconds, file_url, file_path, "
    "mime_type, size_bytes, release_date, created_by) "
    "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s) RETURNING *"
)


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "artist"


def stream_url_for(file_path: Optional[str]) -> Optional[str]:
    """Playable URL for a stored track: Oracle PAR when configured, else a signed R2 GET."""
    if not file_path:
        return None
    oracle = oracle_store()
    if oracle is not None:
        return oracle.object_url(file_path)
    store = music_store()
    return stream_cache.signed_url(store.name, file_path, store.presign_get)


def _with_stream_url(row: dict) -> dict:
    return {**row, "stream_url": stream_url_for(row.get("file_path"))}


def _ensure_playlist(
    db: DatabaseConnection,
    artist_id: int,
    playlist_id: Optional[int],
    create_name: Optional[str],
) -> Optional[int]:
    if playlist_id or not create_name:
        return playlist_id
    row = db.fetch_one(
        "INSERT INTO playlists (artist_id, name) VALUES (%s, %s) RETURNING id",
        (artist_id, create_name.strip()),
    )
    return row["id"]


def _append_to_playlist(db: DatabaseConnection, playlist_id: Optional[int], track_id: int, position: int):
    if playlist_id:
        db.execute(
            "INSERT INTO playlist_tracks (playlist_id, track_id, position) VALUES (%s, %s, %s)",
            (playlist_id, track_id, position),
        )


def _artist_exists(db: DatabaseConnection, artist_id: int) -> None:
    if db.fetch_one("SELECT id FROM artists WHERE id = %s", (artist_id,)) is None:
        raise HTTPException(status_code=404, detail="Artist not found")


def _pick(values: Optional[list[str]], index: int) -> Optional[str]:
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return values[index] if index < len(values) else None


def _as_int(value: Optional[str]) -> int:
    try:
        return int(value or 0)
    except ValueError:
        return 0


# ════════════════════════════════════════════════════════════════════
# Public browse
# ════════════════════════════════════════════════════════════════════

@router.get("/artists")
def list_artists(
    limit: int = Query(20),
    offset: int = Query(0),
    db: DatabaseConnection = Depends(get_db),
):
    limit = min(max(limit, 1), MAX_ARTIST_PAGE)
    offset = max(offset, 0)
    rows = db.fetch_all(
        f"SELECT {_ARTIST_COLUMNS} FROM artists ORDER BY created_at DESC LIMIT %s OFFSET %s",
        (limit, offset),
    )
    return {"data": rows, "paging": {"limit": limit, "offset": offset}}


@router.get("/artists/{artist_id}")
def get_artist(artist_id: int, db: DatabaseConnection = Depends(get_db)):
    artist = db.fetch_one(f"SELECT {_ARTIST_COLUMNS} FROM artists WHERE id = %s", (artist_id,))
    if artist is None:
        raise HTTPException(status_code=404, detail="Artist not found")
    playlists = db.fetch_all(
        "SELECT id, name, description FROM playlists WHERE artist_id = %s ORDER BY created_at DESC",
        (artist_id,),
    )
    return {"data": artist, "playlists": playlists}


@router.get("/playlists/{playlist_id}")
def get_playlist(playlist_id: int, db: DatabaseConnection = Depends(get_db)):
    playlist = db.fetch_one(
        "SELECT id, artist_id, name, description FROM playlists WHERE id = %s",
        (playlist_id,),
    )
    if playlist is None:
        raise HTTPException(status_code=404, detail="Playlist not found")
    tracks = db.fetch_all(
        "SELECT t.id, t.title, t.duration_seconds, t.mime_type, t.file_path, t.release_date "
        "FROM playlist_tracks pt JOIN tracks t ON pt.track_id = t.id "
        "WHERE pt.playlist_id = %s ORDER BY pt.position ASC, pt.created_at ASC",
        (playlist_id,),
    )
    stream_cache.clean_expired()
    return {"data": playlist, "tracks": [_with_stream_url(t) for t in tracks]}


@router.get("/tracks/{track_id}")
def get_track(track_id: int, db: DatabaseConnection = Depends(get_db)):
    track = db.fetch_one(f"SELECT {_TRACK_COLUMNS} FROM tracks WHERE id = %s", (track_id,))
    if track is None:
        raise HTTPException(status_code=404, detail="Track not found")
    return {"data": _with_stream_url(track)}


# ════════════════════════════════════════════════════════════════════
# Oracle PAR helpers (admin)
# ════════════════════════════════════════════════════════════════════

def _require_oracle():
    oracle = oracle_store()
    if oracle is None:
        raise HTTPException(status_code=500, detail="ORACLE_MUSIC_BASE_URL not configured")
    return oracle


@router.post("/oracle/presign")
def oracle_presign(req: OraclePresignRequest, _admin: dict = Depends(require_admin)):
    """Hand out the PAR URL a client should PUT a file to; the PAR base permits writes."""
    oracle = _require_oracle()
    if not req.filename:
        raise HTTPException(status_code=400, detail="filename required")

    if req.type == "artist_image":
        key = music_artist_image_key(req.artistId or "new", req.filename)
    else:
        key = music_track_key(req.artistId, req.filename)
    url = oracle.object_url(key)
    return {"upload_url": url, "public_url": url, "file_path": key}


def _diagnostics_client():
    return build_http_client()


@router.post("/oracle/diagnostics")
def oracle_diagnostics(_admin: dict = Depends(require_admin)):
    oracle = _require_oracle()
    with _diagnostics_client() as client:
        report = oracle.diagnose(client)
    log.info(f"Oracle PAR diagnostics: {report['diagnosis']}")
    return report


# ════════════════════════════════════════════════════════════════════
# Admin writes
# ════════════════════════════════════════════════════════════════════

@router.post("/artists", status_code=201)
def create_artist(
    name: str = Form(""),
    slug: Optional[str] = Form(None),
    image_url: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    if not name.strip():
        raise HTTPException(status_code=400, detail="name required")

    if image is not None and image.filename:
        upload = validate_upload(
            image,
            kind="artist images",
            max_mb=config.IMAGE_MAX_MB,
            type_prefix="image/",
            type_error="Invalid image type",
        )
        try:
            image_url = music_store().put(
                music_artist_image_key(None, upload.filename), upload.body, upload.content_type
            )
        except (StorageNotConfiguredError, StorageError) as e:
            log.error(f"Artist image upload failed: {e}")
            raise HTTPException(status_code=500, detail={"message": "Upload failed", "error": str(e)})
        uploaded_keys.append(key)

    try:
        artist = db.fetch_one(
            "INSERT INTO artists (name, slug, image_url) VALUES (%s, %s, %s) RETURNING *",
            (name.strip(), (slug or "").strip() or slugify(name), image_url),
        )
    except UniqueViolation:
        db.rollback()
        raise HTTPException(status_code=409, detail="Artist slug already exists")
    db.commit()
    return {"data": artist}


@router.post("/artists/{artist_id}/playlists", status_code=201)
def create_playlist(
    artist_id: int,
    req: PlaylistCreate,
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    if not req.name or not req.name.strip():
        raise HTTPException(status_code=400, detail="name required")
    _artist_exists(db, artist_id)
    playlist = db.fetch_one(
        "INSERT INTO playlists (artist_id, name, description) VALUES (%s, %s, %s) RETURNING *",
        (artist_id, req.name.strip(), req.description),
    )
    db.commit()
    return {"data": playlist}


@router.post("/artists/{artist_id}/tracks-meta", status_code=201)
def create_tracks_from_metadata(
    artist_id: int,
    req: TracksMetaRequest,
    admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    """Record tracks whose files were already uploaded directly to the Oracle PAR."""
    if not req.tracks:
        raise HTTPException(status_code=400, detail="tracks required")
    _artist_exists(db, artist_id)

    oracle = oracle_store()
    playlist_id = _ensure_playlist(db, artist_id, req.playlistId, req.createPlaylistName)
    created = []
    for position, meta in enumerate(req.tracks, start=1):
        file_url = oracle.object_url(meta.file_path) if oracle else meta.file_url
        track = db.fetch_one(
            _INSERT_TRACK,
            (
                artist_id,
                meta.title,
                meta.duration_seconds or 0,
                file_url,
                meta.file_path,
                meta.mime_type,
                meta.size_bytes or 0,
                meta.release_date,
                admin["id"],
            ),
        )
        _append_to_playlist(db, playlist_id, track["id"], position)
        created.append(track)
    db.commit()
    return {"data": created, "playlist_id": playlist_id}


def _discard_uploads(store, keys: list[str]) -> None:
    """Best-effort removal of objects from an upload batch that is being rolled back."""
    for key in keys:
        try:
            store.delete(key)
        except StorageError as e:
            log.warning(f"Could not remove orphaned upload {key}: {e}")


@router.post("/artists/{artist_id}/tracks", status_code=201)
def upload_tracks(
    artist_id: int,
    tracks: list[UploadFile] = File(...),
    titles: Optional[list[str]] = Form(None),
    durations: Optional[list[str]] = Form(None),
    releaseDates: Optional[str] = Form(None),
    playlistId: Optional[int] = Form(None),
    createPlaylistName: Optional[str] = Form(None),
    admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    """Upload audio files to R2 and record a track per file, in upload order."""
    _artist_exists(db, artist_id)
    uploads = [
        validate_upload(
            f,
            kind="tracks",
            max_mb=config.AUDIO_MAX_MB,
            allowed_types=AUDIO_TYPES,
            type_error="Invalid audio type",
        )
        for f in tracks
    ]

    store = music_store()
    playlist_id = _ensure_playlist(db, artist_id, playlistId, createPlaylistName)
    created = []
    uploaded_keys = []
    for index, upload in enumerate(uploads):
        key = music_track_key(artist_id, upload.filename, index)
        try:
            file_url = store.put(key, upload.body, upload.content_type)
        except StorageError as e:
            log.error(f"Track upload failed for artist {artist_id}: {e}")
            _discard_uploads(store, uploaded_keys)
            raise HTTPException(status_code=500, detail={"message": "Upload failed", "error": str(e)})
        uploaded_keys.append(key)

        track = db.fetch_one(
            _INSERT_TRACK,
            (
                artist_id,
                _pick(titles, index) or safe_filename(upload.filename),
                _as_int(_pick(durations, index)),
                file_url,
                key,
                upload.content_type,
                upload.size,
                releaseDates or None,
                admin["id"],
            ),
        )
        _append_to_playlist(db, playlist_id, track["id"], index + 1)
        created.append(track)
    db.commit()
    return {"data": created, "playlist_id": playlist_id}


@router.put("/playlists/{playlist_id}/add-track")
def add_track_to_playlist(
    playlist_id: int,
    req: AddTrackRequest,
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    if db.fetch_one("SELECT id FROM playlists WHERE id = %s", (playlist_id,)) is None:
        raise HTTPException(status_code=404, detail="Playlist not found")
    _append_to_playlist(db, playlist_id, req.track_id, req.position or 0)
    db.commit()
    return {"ok": True}


@router.delete("/tracks/{track_id}")
def delete_track(
    track_id: int,
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    """Soft delete: the object is removed from R2 and the track loses its file_url."""
    track = db.fetch_one("SELECT file_path FROM tracks WHERE id = %s", (track_id,))
    if track is None:
        raise HTTPException(status_code=404, detail="Track not found")

    key = track.get("file_path")
    if key and oracle_store() is None:
        try:
            store = music_store()
            store.delete(key)
            stream_cache.invalidate(store.name, key)
        except (StorageNotConfiguredError, StorageError) as e:
            log.warning(f"Could not remove stored file for track {track_id}: {e}")

    db.execute("UPDATE tracks SET file_url = NULL WHERE id = %s", (track_id,))
    db.commit()
    return {"ok": True}
