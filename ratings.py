"""
Running `{average, count}` aggregates on reviewed entities.

Each review write moves the aggregate by a rating delta and a count delta:

    create  -> (+rating, +1)
    delete  -> (-rating, -1)
    edit    -> (new - old, 0)

The stored pair is updated with a compare-and-set on its current values, so a
concurrent writer forces a re-read instead of a lost update.
"""

import logging
from typing import Dict, Optional

from pymongo.database import Database

from config import RATING_UPDATE_RETRIES
from database import to_object_id, utcnow
from errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

TARGET_COLLECTIONS: Dict[str, str] = {
    "product": "product",
    "service": "repair_service",
    "repairer": "user",
    "seller": "user",
}


def adjust_ratings(ratings: Optional[dict], delta: float, count_delta: int) -> dict:
    ratings = ratings or {}
    average = ratings.get("average", 0) or 0
    count = ratings.get("count", 0) or 0
    new_count = count + count_delta
    if new_count <= 0:
        return {"average": 0.0, "count": 0}
    return {"average": (average * count + delta) / new_count, "count": new_count}


def on_review_created(rating: int):
    return rating, 1


def on_review_deleted(rating: int):
    return -rating, -1


def on_review_edited(old_rating: int, new_rating: int):
    return new_rating - old_rating, 0


def apply_rating_change(db: Database, target_type: str, target_id: str, delta: float, count_delta: int) -> dict:
    """Move the target's aggregate and return the stored result."""
    collection = db[TARGET_COLLECTIONS[target_type]]
    oid = to_object_id(target_id)
    if oid is None:
        raise NotFoundError("Review target not found")

    for _ in range(RATING_UPDATE_RETRIES):
        target = collection.find_one({"_id": oid}, {"ratings": 1})
        if target is None:
            raise NotFoundError("Review target not found")

        current = target.get("ratings")
        if current is None:
            guard = {"ratings": {"$exists": False}}
        else:
            guard = {"ratings.average": current.get("average"), "ratings.count": current.get("count")}

        new_ratings = adjust_ratings(current, delta, count_delta)
        result = collection.update_one(
            {"_id": oid, **guard},
            {"$set": {"ratings": new_ratings, "updated_at": utcnow()}},
        )
        if result.matched_count:
            logger.info("Rating for %s %s now %.3f over %d review(s)",
                        target_type, target_id, new_ratings["average"], new_ratings["count"])
            return new_ratings
        logger.debug("Rating for %s %s changed underneath us, retrying", target_type, target_id)

    raise ConflictError("Rating update conflicted with concurrent reviews, please retry")
