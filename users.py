from typing import Optional

from fastapi import APIRouter, Depends
from pymongo.database import Database

from auth import get_admin_user
from database import Repository, get_db, serialize
from errors import NotFoundError
from schemas import Role

router = APIRouter(tags=["users"])

# Collections reported by the admin overview
OVERVIEW_COLLECTIONS = ["user", "vehicle", "product", "repair_service", "order", "service_request", "review"]


@router.get("/users/{user_id}")
def get_user(user_id: str, db: Database = Depends(get_db)):
    user = Repository(db, "user").get(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return serialize(user)


@router.get("/admin/users", tags=["admin"])
def admin_list_users(role: Optional[Role] = None, _: dict = Depends(get_admin_user), db: Database = Depends(get_db)):
    query = {"role": role} if role else {}
    return [serialize(u) for u in Repository(db, "user").find(query, sort=[("created_at", -1)])]


@router.get("/admin/overview", tags=["admin"])
def admin_overview(_: dict = Depends(get_admin_user), db: Database = Depends(get_db)):
    counts = {name: db[name].count_documents({}) for name in OVERVIEW_COLLECTIONS}
    counts["open_service_requests"] = db["service_request"].count_documents(
        {"status": {"$in": ["pending", "accepted", "in-progress"]}}
    )
    counts["orders_in_processing"] = db["order"].count_documents({"order_status": "processing"})
    return counts
