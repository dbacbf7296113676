"""Internet radio stations. Deleting a station only deactivates it."""

import logging
from typing import Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, HTTPException

from services.catalog_api.db import DatabaseConnection, get_db
from services.catalog_api.models import RadioStationCreate
from services.catalog_api.security import require_admin

log = logging.getLogger("catalog-api")

router = APIRouter(prefix="/api/radio", tags=["radio"])

_STATION_COLUMNS = "id, name, logo_url, stream_url, is_active, created_at"


def is_valid_url(value: Optional[str]) -> bool:
    """True for absolute URLs with both a scheme and a host."""
    if not value:
        return False
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)


@router.get("")
def list_stations(db: DatabaseConnection = Depends(get_db)):
    rows = db.fetch_all(
        f"SELECT {_STATION_COLUMNS} FROM radio_stations WHERE is_active = TRUE ORDER BY created_at DESC"
    )
    return {"data": rows}


@router.post("", status_code=201)
def create_station(
    req: RadioStationCreate,
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    name = (req.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="name required")
    if not is_valid_url(req.stream_url):
        raise HTTPException(status_code=400, detail="valid stream_url required")
    if req.logo_url and not is_valid_url(req.logo_url):
        raise HTTPException(status_code=400, detail="logo_url must be a valid URL")

    station = db.fetch_one(
        f"INSERT INTO radio_stations (name, logo_url, stream_url, is_active) "
        f"VALUES (%s, %s, %s, %s) RETURNING {_STATION_COLUMNS}",
        (name, req.logo_url or None, req.stream_url, True if req.is_active is None else req.is_active),
    )
    db.commit()
    log.info(f"Created radio station {station['id']}: {name}")
    return {"data": station}


@router.delete("/{station_id}")
def deactivate_station(
    station_id: int,
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    updated = db.execute(
        "UPDATE radio_stations SET is_active = FALSE WHERE id = %s AND is_active = TRUE",
        (station_id,),
    )
    if updated == 0:
        raise HTTPException(status_code=404, detail="Station not found")
    db.commit()
    return {"ok": True}
