from types import SimpleNamespace

import pytest
from bson import ObjectId

import ratings
from errors import ConflictError, NotFoundError
from ratings import adjust_ratings, apply_rating_change, on_review_created, on_review_deleted, on_review_edited


def test_running_mean_matches_arithmetic_mean():
    stored = {"average": 0, "count": 0}
    scores = [5, 4, 3, 5, 1]
    for score in scores:
        stored = adjust_ratings(stored, *on_review_created(score))
    assert stored["count"] == len(scores)
    assert stored["average"] == pytest.approx(sum(scores) / len(scores))


def test_delete_restores_mean_of_remaining():
    stored = {"average": 0, "count": 0}
    for score in (5, 2, 4):
        stored = adjust_ratings(stored, *on_review_created(score))
    stored = adjust_ratings(stored, *on_review_deleted(2))
    assert stored == {"average": pytest.approx(4.5), "count": 2}


def test_edit_keeps_count():
    stored = adjust_ratings({"average": 4.0, "count": 2}, *on_review_edited(3, 5))
    assert stored == {"average": pytest.approx(5.0), "count": 2}


def test_last_review_deleted_resets_aggregate():
    assert adjust_ratings({"average": 3.0, "count": 1}, *on_review_deleted(3)) == {"average": 0.0, "count": 0}
    assert adjust_ratings(None, -4, -1) == {"average": 0.0, "count": 0}


def test_apply_rating_change_persists(db):
    product_id = db["product"].insert_one({"name": "Filter"}).inserted_id
    apply_rating_change(db, "product", str(product_id), *on_review_created(4))
    apply_rating_change(db, "product", str(product_id), *on_review_created(2))
    stored = db["product"].find_one({"_id": product_id})["ratings"]
    assert stored == {"average": pytest.approx(3.0), "count": 2}


def test_apply_rating_change_uses_user_collection_for_sellers(db):
    seller_id = db["user"].insert_one({"role": "seller", "ratings": {"average": 0, "count": 0}}).inserted_id
    apply_rating_change(db, "seller", str(seller_id), *on_review_created(5))
    assert db["user"].find_one({"_id": seller_id})["ratings"]["count"] == 1


def test_missing_target(db):
    with pytest.raises(NotFoundError):
        apply_rating_change(db, "product", str(ObjectId()), 5, 1)
    with pytest.raises(NotFoundError):
        apply_rating_change(db, "service", "not-an-id", 5, 1)


def test_gives_up_after_repeated_conflicts(monkeypatch):
    oid = ObjectId()
    attempts = []

    class StaleCollection:
        def find_one(self, *args, **kwargs):
            return {"_id": oid, "ratings": {"average": 4.0, "count": 1}}

        def update_one(self, *args, **kwargs):
            attempts.append(args)
            return SimpleNamespace(matched_count=0)

    monkeypatch.setattr(ratings, "RATING_UPDATE_RETRIES", 3)
    with pytest.raises(ConflictError):
        apply_rating_change({"product": StaleCollection()}, "product", str(oid), 5, 1)
    assert len(attempts) == 3
