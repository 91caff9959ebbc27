import logging
import math
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import get_current_active_user, require_roles, user_id
from database import Repository, get_db, serialize, utcnow
from errors import ConflictError, ForbiddenError, NotFoundError
from ratings import (
    TARGET_COLLECTIONS,
    apply_rating_change,
    on_review_created,
    on_review_deleted,
    on_review_edited,
)
from schemas import Review, ReviewTargetType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["reviews"])


class ReviewIn(BaseModel):
    target_type: ReviewTargetType
    target_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    comment: str = Field(..., min_length=1)
    images: List[str] = []
    order_id: Optional[str] = None
    service_request_id: Optional[str] = None

class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = None
    comment: Optional[str] = Field(None, min_length=1)
    images: Optional[List[str]] = None

class ResponseIn(BaseModel):
    comment: str = Field(..., min_length=1)


def load_target(db: Database, target_type: str, target_id: str) -> Optional[dict]:
    target = Repository(db, TARGET_COLLECTIONS[target_type]).get(target_id)
    if target is not None and target_type in ("repairer", "seller") and target.get("role") != target_type:
        return None
    return target


def has_transacted(db: Database, uid: str, body: ReviewIn, target: dict) -> bool:
    """Whether the reviewer has a delivered order or completed service behind this review."""
    orders = Repository(db, "order")
    requests = Repository(db, "service_request")

    if body.target_type in ("product", "seller"):
        query = {"customer_id": uid, "order_status": "delivered"}
        if body.target_type == "product":
            query["products.product_id"] = body.target_id
        else:
            query["seller_id"] = body.target_id
        if body.order_id:
            order = orders.get(body.order_id)
            return order is not None and all(
                _matches(order, key, value) for key, value in query.items()
            )
        return orders.find_one(query) is not None

    repairer_id = body.target_id if body.target_type == "repairer" else target.get("repairer_id")
    query = {"owner_id": uid, "status": "completed", "repairer_id": repairer_id}
    if body.service_request_id:
        request = requests.get(body.service_request_id)
        if request is None or not all(_matches(request, k, v) for k, v in query.items()):
            return False
        return body.target_type == "repairer" or request.get("service_type") == target.get("name")
    return requests.find_one(query) is not None


def _matches(doc: dict, key: str, value) -> bool:
    if key == "products.product_id":
        return any(item.get("product_id") == value for item in doc.get("products", []))
    return doc.get(key) == value


def _load_review(db: Database, review_id: str) -> dict:
    review = Repository(db, "review").get(review_id)
    if review is None:
        raise NotFoundError("Review not found")
    return review


def _check_author(current_user: dict, review: dict, action: str) -> None:
    if review["user_id"] != user_id(current_user) and current_user.get("role") != "admin":
        raise ForbiddenError(f"You do not have permission to {action} this review")


@router.get("")
def list_reviews(
    target_type: ReviewTargetType,
    target_id: str,
    rating: Optional[int] = Query(None, ge=1, le=5),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    query = {"target_type": target_type, "target_id": target_id}
    reviews = Repository(db, "review")

    distribution = {str(i): 0 for i in range(1, 6)}
    for row in reviews.collection.aggregate([
        {"$match": query},
        {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
    ]):
        distribution[str(row["_id"])] = row["count"]

    if rating:
        query["rating"] = rating
    docs = reviews.find(query, sort=[("created_at", -1)], skip=(page - 1) * limit, limit=limit)
    total = reviews.count(query)
    return {
        "reviews": [serialize(r) for r in docs],
        "distribution": distribution,
        "pagination": {"total": total, "page": page, "limit": limit, "pages": math.ceil(total / limit)},
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_review(
    body: ReviewIn,
    current_user: dict = Depends(require_roles("vehicle-owner")),
    db: Database = Depends(get_db),
):
    uid = user_id(current_user)
    target = load_target(db, body.target_type, body.target_id)
    if target is None:
        raise NotFoundError("Review target not found")
    if not has_transacted(db, uid, body, target):
        if body.target_type == "product":
            raise ForbiddenError("You can only review products you have purchased")
        if body.target_type == "seller":
            raise ForbiddenError("You can only review sellers you have purchased from")
        raise ForbiddenError("You can only review services or repairers you have used")

    reviews = Repository(db, "review")
    if reviews.find_one({"user_id": uid, "target_type": body.target_type, "target_id": body.target_id}):
        raise ConflictError("You have already reviewed this item")

    review = Review(
        user_id=uid,
        target_type=body.target_type,
        target_id=body.target_id,
        rating=body.rating,
        title=body.title,
        comment=body.comment,
        images=body.images,
        is_verified=True,
    )
    review_id = reviews.create(review)
    try:
        apply_rating_change(db, body.target_type, body.target_id, *on_review_created(body.rating))
    except Exception:
        logger.warning("Rating update failed; removing review %s", review_id)
        reviews.delete(review_id)
        raise
    return {"message": "Review submitted successfully", "review": serialize(reviews.get(review_id))}


@router.get("/{review_id}")
def get_review(review_id: str, db: Database = Depends(get_db)):
    return serialize(_load_review(db, review_id))


@router.put("/{review_id}")
def update_review(
    review_id: str,
    body: ReviewUpdate,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    review = _load_review(db, review_id)
    _check_author(current_user, review, "update")

    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    reviews = Repository(db, "review")
    updated = reviews.update(review_id, changes)
    if updated is None:
        raise NotFoundError("Review not found")

    new_rating = changes.get("rating", review["rating"])
    if new_rating != review["rating"]:
        try:
            apply_rating_change(db, review["target_type"], review["target_id"],
                                *on_review_edited(review["rating"], new_rating))
        except Exception:
            logger.warning("Rating update failed; restoring review %s", review_id)
            reviews.restore(review)
            raise
    return serialize(updated)


@router.delete("/{review_id}")
def delete_review(
    review_id: str,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    review = _load_review(db, review_id)
    _check_author(current_user, review, "delete")

    reviews = Repository(db, "review")
    if not reviews.delete(review_id):
        raise NotFoundError("Review not found")
    try:
        apply_rating_change(db, review["target_type"], review["target_id"], *on_review_deleted(review["rating"]))
    except NotFoundError:
        # target is gone, nothing left to keep in sync
        logger.info("Review %s deleted; its %s target no longer exists", review_id, review["target_type"])
    except Exception:
        logger.warning("Rating update failed; restoring review %s", review_id)
        reviews.restore(review)
        raise
    return {"message": "Review deleted successfully"}


@router.post("/{review_id}")
def respond_to_review(
    review_id: str,
    body: ResponseIn,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    review = _load_review(db, review_id)
    if review.get("response"):
        raise ConflictError("This review already has a response")

    uid = user_id(current_user)
    allowed = current_user.get("role") == "admin"
    if not allowed and review["target_type"] in ("seller", "repairer"):
        allowed = review["target_id"] == uid
    elif not allowed and review["target_type"] == "product":
        product = Repository(db, "product").get(review["target_id"])
        allowed = product is not None and product["seller_id"] == uid
    elif not allowed and review["target_type"] == "service":
        service = Repository(db, "repair_service").get(review["target_id"])
        allowed = service is not None and service["repairer_id"] == uid
    if not allowed:
        raise ForbiddenError("You do not have permission to respond to this review")

    updated = Repository(db, "review").update(
        review_id,
        {"response": {"user_id": uid, "comment": body.comment, "date": utcnow()}},
        extra_filter={"response": None},
    )
    if updated is None:
        raise ConflictError("This review already has a response")
    return serialize(updated)
