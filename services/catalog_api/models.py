"""Request payloads accepted by the catalog API."""

from datetime import date
from typing import Optional

from pydantic import BaseModel


# ── Users ───────────────────────────────────────────────────────────

class Credentials(BaseModel):
    """Register/login payload. Fields are checked in the handler so a missing
    value yields 400 rather than a validation error."""
    username: Optional[str] = None
    password: Optional[str] = None


class GoogleLoginRequest(BaseModel):
    """Google sign-in: an ID token, an OAuth access token, or (if trusted) an email."""
    id_token: Optional[str] = None
    access_token: Optional[str] = None
    email: Optional[str] = None


# ── Movies & reviews ────────────────────────────────────────────────

class MovieFields(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    release_year: Optional[int] = None
    genre: Optional[str] = None
    poster_url: Optional[str] = None
    movie_file_url: Optional[str] = None


class ReviewCreate(BaseModel):
    movie_id: Optional[int] = None
    rating: Optional[int] = None
    comment: Optional[str] = None


# ── Music ───────────────────────────────────────────────────────────

class PlaylistCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class TrackMeta(BaseModel):
    """Metadata for a file the client already PUT to the Oracle PAR."""
    title: str
    file_path: str
    duration_seconds: Optional[int] = 0
    file_url: Optional[str] = None
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = 0
    release_date: Optional[date] = None


class TracksMetaRequest(BaseModel):
    tracks: list[TrackMeta] = []
    playlistId: Optional[int] = None
    createPlaylistName: Optional[str] = None


class AddTrackRequest(BaseModel):
    track_id: int
    position: Optional[int] = None


class OraclePresignRequest(BaseModel):
    type: Optional[str] = None
    artistId: Optional[str] = None
    filename: Optional[str] = None


# ── Radio ───────────────────────────────────────────────────────────

class RadioStationCreate(BaseModel):
    name: Optional[str] = None
    stream_url: Optional[str] = None
    logo_url: Optional[str] = None
    is_active: Optional[bool] = None
