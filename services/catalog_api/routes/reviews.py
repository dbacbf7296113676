"""Movie reviews: users post, admins moderate, approved reviews are public."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from services.catalog_api.db import DatabaseConnection, get_db
from services.catalog_api.models import ReviewCreate
from services.catalog_api.security import get_current_user, require_admin

log = logging.getLogger("catalog-api")

router = APIRouter(prefix="/api/reviews", tags=["reviews"])

MIN_RATING = 1
MAX_RATING = 5


def approved_reviews(db: DatabaseConnection, movie_id: int) -> list[dict]:
    return db.fetch_all(
        "SELECT r.*, u.username FROM reviews r JOIN users u ON r.user_id = u.id "
        "WHERE r.movie_id = %s AND r.approved = true ORDER BY r.created_at DESC",
        (movie_id,),
    )


@router.post("", status_code=201)
def create_review(
    req: ReviewCreate,
    user: dict = Depends(get_current_user),
    db: DatabaseConnection = Depends(get_db),
):
    if not req.movie_id or req.rating is None:
        raise HTTPException(status_code=400, detail="Movie and rating required")
    if not MIN_RATING <= req.rating <= MAX_RATING:
        raise HTTPException(status_code=400, detail="Rating must be between 1 and 5")

    if db.fetch_one("SELECT id FROM movies WHERE id = %s", (req.movie_id,)) is None:
        raise HTTPException(status_code=404, detail="Movie not found")

    review = db.fetch_one(
        "INSERT INTO reviews (user_id, movie_id, rating, comment) VALUES (%s, %s, %s, %s) RETURNING *",
        (user["id"], req.movie_id, req.rating, req.comment),
    )
    db.commit()
    return review


@router.get("/movie/{movie_id}")
def list_movie_reviews(movie_id: int, db: DatabaseConnection = Depends(get_db)):
    return approved_reviews(db, movie_id)


@router.get("/pending")
def list_pending_reviews(
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    """Reviews waiting for moderation, oldest first."""
    return db.fetch_all(
        "SELECT r.*, u.username, m.title AS movie_title FROM reviews r "
        "JOIN users u ON r.user_id = u.id JOIN movies m ON r.movie_id = m.id "
        "WHERE r.approved = false ORDER BY r.created_at ASC"
    )


@router.put("/{review_id}/approve")
def approve_review(
    review_id: int,
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    review = db.fetch_one(
        "UPDATE reviews SET approved = true, updated_at = CURRENT_TIMESTAMP WHERE id = %s RETURNING *",
        (review_id,),
    )
    if review is None:
        raise HTTPException(status_code=404, detail="Review not found")
    db.commit()
    return review


@router.delete("/{review_id}")
def delete_review(
    review_id: int,
    _admin: dict = Depends(require_admin),
    db: DatabaseConnection = Depends(get_db),
):
    if db.execute("DELETE FROM reviews WHERE id = %s", (review_id,)) == 0:
        raise HTTPException(status_code=404, detail="Review not found")
    db.commit()
    return {"message": "Review deleted"}
