"""Movie catalog routes: browse, admin CRUD, asset uploads and signed playback URLs."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from services.catalog_api import config
from services.catalog_api.db import DatabaseConnection, get_db
from services.catalog_api.models import MovieFields
from services.catalog_api.routes.reviews import approved_reviews
from services.catalog_api.security import get_current_user, require_admin
from services.catalog_api.storage import (
    VIDEO_TYPES,
    StorageError,
    StorageNotConfiguredError,
    build_object_key,
    movie_store,
    validate_upload,
)

log = logging.getLogger("catalog-api")

router = APIRouter(prefix="/api/movies", tags=["movies"])

SORT_FIELDS = ("title", "release_year", "genre", "created_at")
SORT_ORDERS = ("ASC", "DESC")
MAX_PAGE_SIZE = 100
UPDATABLE_FIELDS = ("title", "description", "release_year", "genre", "poster_url", "movie_file_url")

_AVG_RATING = "(SELECT AVG(rating) FROM reviews WHERE movie_id = movies.id)"


def build_movie_list_query(
    *,
    search: Optional[str] = None,
    genre: Optional[str] = None,
    year: Optional[str] = None,
    min_rating: Optional[float] = None,
    max_rating: Optional[float] = None,
    sort_by: str = "created_at",
    sort_order: str = "DESC",
    page: int = 1,
    limit: int = 10,
) -> tuple[str, list[Any]]:
    """
    Build the filtered, sorted and paginated movie listing.

    Filter values are always bound as parameters; the ORDER BY column and
    direction come from fixed whitelists and fall back to newest first.
    """
    clauses = []
    params: list[Any] = []

    if search:
        clauses.append("(title ILIKE %s OR description ILIKE %s)")
        pattern = f"%{search}%"
        params.extend([pattern, pattern])

    if genre and genre != "all":
        clauses.append("genre = %s")
        params.append(genre)

    if year and year != "all":
        try:
            params.append(int(year))
        except ValueError:
            raise HTTPException(status_code=400, detail="year must be a number")
        clauses.append("release_year = %s")

    if min_rating is not None:
        clauses.append(f"{_AVG_RATING} >= %s")
        params.append(min_rating)

    if max_rating is not None:
        clauses.append(f"{_AVG_RATING} <= %s")
        params.append(max_rating)

    sort_field = sort_by if sort_by in SORT_FIELDS else "created_at"
    direction = (sort_order or "").upper()
    direction = direction if direction in SORT_ORDERS else "DESC"

    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    sql = "SELECT * FROM movies"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += f" ORDER BY {sort_field} {direction} LIMIT %s OFFSET %s"
    params.extend([limit, (page - 1) * limit])
    return sql, params


def _get_movie_or_404(db: DatabaseConnection, movie_id: int, columns: str = "*") -> dict:
    movie = db.fetch_one(f"SELECT {columns} FROM movies WHERE id = %s", (movie_id,))
    if movie is None:
        raise HTTPException(status_code=404, detail="Movie not found")
    return movie


def _upload_failed(e: Exception) -> HTTPException:
    if isinstance(e, StorageNotConfiguredError):
        return HTTPException(
            status_code=500,
            detail={
                "message": "File upload service not configured. Please contact administrator.",
                "error": str(e),
            },
        )
    return HTTPException(status_code=500, detail={"message": "Upload failed", "error": str(e)})


# ── Public browse ───────────────────────────────────────────────────

@router.get("")
def list_movies(
    search: Optional[str] = None,
    genre: Optional[str] = None,
    year: Optional[str] = None,
    minRating: Optional[float] = None,
    maxRating: Optional[float] = None,
    sortBy: str = "created_at",
    sortOrder: str = "DESC",
    page: int = Query(1),
    limit: int = Query(10),
    db: DatabaseConnection = Depends(get_db),
):
    sql, params = build_movie_list_query(
        search=search,
        genre=genre,
        year=year,
        min_rating=minRating,
        max_rating=maxRating,
        sort_by=sortBy,
        sort_order=sortOrder,
        page=page,
        limit=limit,
    )
    log.debug(f"Movies query: {sql} params={params}")
    return db.fetch_all(sql, params)


@router.get("/test")
def movies_test():
    return {"message": "Movies route is working!"}


@router.get("/genres")
def list_genres(db: DatabaseConnection = Depends(get_db)):
    rows = db.fetch_all(
        "SELECT DISTINCT TRIM(genre) AS genre FROM movies "
        "WHERE genre IS NOT NULL AND TRIM(genre) != '' ORDER BY 1"
    )
    return [row["genre"] for row in rows]


@router.get("/years")
def list_years(db: DatabaseConnection = Depends(get_db)):
    rows = db.fetch_all(
        "SELECT DISTINCT release_year FROM movies WHERE release_year IS NOT NULL "
        "ORDER BY release_year DESC"
    )
    return [row["release_year"] for row in rows]


@router.get("/{movie_id}")
def get_movie(movie_id: int, db: DatabaseConnection = Depends(get_db)):
    return _get_movie_or_404(db, movie_id)


@router.get("/{movie_id}/reviews")
def movie_reviews(movie_id: int, db: DatabaseConnection = Depends(get_db)):
    return approved_reviews(db, movie_id)


# ── Admin CRUD ──────────────────────────────────────────────────────

@router.post("", status_code=201)
def create_movie(
    req: MovieFields,
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    if not req.title or not req.title.strip():
        raise HTTPException(status_code=400, detail="Title is required")

    movie = db.fetch_one(
        "INSERT INTO movies (title, description, release_year, genre, poster_url, movie_file_url) "
        "VALUES (%s, %s, %s, %s, %s, %s) RETURNING *",
        (
            req.title.strip(),
            req.description,
            req.release_year,
            req.genre,
            req.poster_url,
            req.movie_file_url,
        ),
    )
    db.commit()
    log.info(f"Created movie {movie['id']}: {movie['title']}")
    return movie


@router.put("/{movie_id}")
def update_movie(
    movie_id: int,
    req: MovieFields,
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    """Update only the fields present in the request body."""
    changes = {k: v for k, v in req.model_dump(exclude_unset=True).items() if k in UPDATABLE_FIELDS}
    if "title" in changes and not (changes["title"] or "").strip():
        raise HTTPException(status_code=400, detail="Title is required")
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")

    assignments = ", ".join(f"{column} = %s" for column in changes)
    movie = db.fetch_one(
        f"UPDATE movies SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = %s RETURNING *",
        (*changes.values(), movie_id),
    )
    if movie is None:
        raise HTTPException(status_code=404, detail="Movie not found")
    db.commit()
    return movie


@router.delete("/{movie_id}")
def delete_movie(
    movie_id: int,
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    """Delete the record; stored poster and video objects are removed best-effort."""
    movie = _get_movie_or_404(db, movie_id, "poster_url, movie_file_url")

    deleted_files = []
    try:
        store = movie_store()
    except StorageNotConfiguredError as e:
        log.warning(f"Skipping file cleanup for movie {movie_id}: {e}")
        store = None

    if store is not None:
        for field in ("poster_url", "movie_file_url"):
            key = store.key_for_url(movie.get(field))
            if not key:
                continue
            try:
                store.delete(key)
                deleted_files.append(key)
            except StorageError as e:
                log.error(f"Error deleting {field} for movie {movie_id}: {e}")

    db.execute("DELETE FROM movies WHERE id = %s", (movie_id,))
    db.commit()
    return {"message": "Movie deleted successfully", "deletedFiles": deleted_files}


# ── Asset uploads ───────────────────────────────────────────────────

@router.post("/{movie_id}/poster")
def upload_poster(
    movie_id: int,
    poster: Optional[UploadFile] = File(None),
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    _get_movie_or_404(db, movie_id, "id")
    upload = validate_upload(
        poster,
        kind="posters",
        max_mb=config.POSTER_MAX_MB,
        type_prefix="image/",
        type_error="Only image files are allowed for posters",
    )
    key = build_object_key("posters", movie_id, upload.filename)
    try:
        poster_url = movie_store().put(key, upload.body, upload.content_type)
    except (StorageNotConfiguredError, StorageError) as e:
        log.error(f"Poster upload error for movie {movie_id}: {e}")
        raise _upload_failed(e)

    db.execute(
        "UPDATE movies SET poster_url = %s, updated_at = CURRENT_TIMESTAMP WHERE id = %s",
        (poster_url, movie_id),
    )
    db.commit()
    return {"poster_url": poster_url}


@router.post("/{movie_id}/movie")
def upload_movie_file(
    movie_id: int,
    movieFile: Optional[UploadFile] = File(None),
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    _get_movie_or_404(db, movie_id, "id")
    upload = validate_upload(
        movieFile,
        kind="movies",
        max_mb=config.MOVIE_MAX_MB,
        allowed_types=VIDEO_TYPES,
        type_error="Only video files are allowed for movies",
    )
    key = build_object_key("movies", movie_id, upload.filename)
    try:
        movie_url = movie_store().put(key, upload.body, upload.content_type)
    except (StorageNotConfiguredError, StorageError) as e:
        log.error(f"Movie upload error for movie {movie_id}: {e}")
        raise _upload_failed(e)

    db.execute(
        "UPDATE movies SET movie_file_url = %s, updated_at = CURRENT_TIMESTAMP WHERE id = %s",
        (movie_url, movie_id),
    )
    db.commit()
    return {"movie_file_url": movie_url}


# ── Playback ────────────────────────────────────────────────────────

@router.get("/{movie_id}/video-url")
def video_url(
    movie_id: int,
    _user: dict = Depends(get_current_user),
    db: DatabaseConnection = Depends(get_db),
):
    """Short-lived signed GET URL for the movie's video file."""
    movie = _get_movie_or_404(db, movie_id, "movie_file_url")
    if not movie.get("movie_file_url"):
        raise HTTPException(status_code=404, detail="No video file found for this movie")

    try:
        store = movie_store()
        key = store.key_for_url(movie["movie_file_url"])
        if key is None:
            raise StorageError(f"{movie['movie_file_url']} is not in the {store.name} bucket")
        signed = store.presign_get(key, config.SIGNED_URL_TTL)
    except (StorageNotConfiguredError, StorageError) as e:
        log.error(f"Error generating signed URL for movie {movie_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to generate video URL")

    return {"signed_url": signed, "expires_in": config.SIGNED_URL_TTL}
