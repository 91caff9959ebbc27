import logging
import math
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import get_current_active_user, require_roles, user_id
from database import Repository, as_naive_utc, drop_nulls, get_db, serialize, utcnow
from errors import ConflictError, ForbiddenError, NotFoundError
from lifecycle import (
    authorize_service_request_update,
    can_cancel_service_request,
    check_can_cancel,
    check_can_complete,
)
from maintenance import CompletionIn, complete_service_request
from schemas import ServiceLocation, ServiceRequest, ServiceRequestStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/service-requests", tags=["service-requests"])

DATE_FIELDS = ("appointment_date", "estimated_completion_date", "actual_completion_date")


class ServiceRequestIn(BaseModel):
    vehicle_id: str = Field(..., min_length=1)
    service_type: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    appointment_date: Optional[datetime] = None
    location: Optional[ServiceLocation] = None
    estimated_cost: Optional[float] = Field(None, ge=0)
    images: List[str] = []

class ServiceRequestUpdate(BaseModel):
    service_type: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    status: Optional[ServiceRequestStatus] = None
    appointment_date: Optional[datetime] = None
    estimated_completion_date: Optional[datetime] = None
    actual_completion_date: Optional[datetime] = None
    location: Optional[ServiceLocation] = None
    estimated_cost: Optional[float] = Field(None, ge=0)
    final_cost: Optional[float] = Field(None, ge=0)
    images: Optional[List[str]] = None


def _load(db: Database, request_id: str) -> dict:
    request = Repository(db, "service_request").get(request_id)
    if request is None:
        raise NotFoundError("Service request not found")
    return request


@router.get("")
def list_service_requests(
    status_filter: Optional[ServiceRequestStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    uid = user_id(current_user)
    role = current_user.get("role")
    query = {}
    if role == "vehicle-owner":
        query["owner_id"] = uid
    elif role == "repairer":
        # assigned work plus the open pool they can accept from
        query["$or"] = [{"repairer_id": uid}, {"repairer_id": None, "status": "pending"}]
    elif role != "admin":
        raise ForbiddenError("Access denied")
    if status_filter:
        query["status"] = status_filter

    requests = Repository(db, "service_request")
    docs = requests.find(query, sort=[("created_at", -1)], skip=(page - 1) * limit, limit=limit)
    total = requests.count(query)
    return {
        "service_requests": [serialize(d) for d in docs],
        "pagination": {"total": total, "page": page, "limit": limit, "pages": math.ceil(total / limit)},
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_service_request(
    body: ServiceRequestIn,
    current_user: dict = Depends(require_roles("vehicle-owner")),
    db: Database = Depends(get_db),
):
    vehicle = Repository(db, "vehicle").get(body.vehicle_id)
    if vehicle is None:
        raise NotFoundError("Vehicle not found")
    if vehicle["owner_id"] != user_id(current_user):
        raise ForbiddenError("You can only request service for your own vehicles")

    request = ServiceRequest(
        owner_id=user_id(current_user),
        vehicle_id=body.vehicle_id,
        service_type=body.service_type,
        description=body.description,
        appointment_date=as_naive_utc(body.appointment_date),
        location=body.location,
        estimated_cost=body.estimated_cost,
        images=body.images,
    )
    requests = Repository(db, "service_request")
    request_id = requests.create(request)
    logger.info("Service request %s opened by %s", request_id, user_id(current_user))
    return {"service_request": serialize(requests.get(request_id))}


@router.get("/{request_id}")
def get_service_request(
    request_id: str,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    request = _load(db, request_id)
    uid = user_id(current_user)
    if current_user.get("role") != "admin" and uid not in (request["owner_id"], request.get("repairer_id")):
        raise ForbiddenError("Access denied")
    result = serialize(request)
    if request.get("maintenance_record_id"):
        result["maintenance_record"] = serialize(
            Repository(db, "maintenance_record").get(request["maintenance_record_id"])
        )
    return result


@router.put("/{request_id}")
def update_service_request(
    request_id: str,
    body: ServiceRequestUpdate,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    request = _load(db, request_id)
    changes = drop_nulls(body.model_dump(exclude_unset=True), ServiceRequest)
    actor, changes = authorize_service_request_update(current_user, request, changes)
    for key in DATE_FIELDS:
        if changes.get(key) is not None:
            changes[key] = as_naive_utc(changes[key])

    if changes.get("status") == "completed":
        completion = CompletionIn(final_cost=changes.pop("final_cost"), service_date=utcnow())
        changes.pop("status")
        changes.pop("actual_completion_date", None)
        result = complete_service_request(db, request, completion, extra_changes=changes)
        return serialize(result["service_request"])

    requests = Repository(db, "service_request")
    extra_filter = {"status": request["status"]}
    if actor == "acceptor":
        extra_filter["repairer_id"] = None
    updated = requests.update(request_id, changes, extra_filter=extra_filter)
    if updated is None:
        raise ConflictError("Service request changed while updating, please retry")
    if "status" in changes:
        logger.info("Service request %s moved %s -> %s by %s (%s)", request_id, request["status"],
                    changes["status"], user_id(current_user), actor)
    return serialize(updated)


@router.post("/{request_id}")
def complete_request(
    request_id: str,
    body: CompletionIn,
    current_user: dict = Depends(require_roles("repairer")),
    db: Database = Depends(get_db),
):
    request = _load(db, request_id)
    check_can_complete(request)
    if request.get("repairer_id") != user_id(current_user):
        raise ForbiddenError("Only the assigned repairer can complete this service request")

    result = complete_service_request(db, request, body)
    return {
        "service_request": serialize(result["service_request"]),
        "maintenance_record": serialize(result["maintenance_record"]),
    }


@router.delete("/{request_id}")
def cancel_service_request(
    request_id: str,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    request = _load(db, request_id)
    check_can_cancel(request)
    if not can_cancel_service_request(current_user, request):
        raise ForbiddenError("You do not have permission to cancel this service request")

    updated = Repository(db, "service_request").update(
        request_id, {"status": "cancelled"},
        extra_filter={"status": {"$nin": ["completed", "cancelled"]}},
    )
    if updated is None:
        check_can_cancel(_load(db, request_id))
        raise ConflictError("Service request changed while cancelling, please retry")
    logger.info("Service request %s cancelled by %s", request_id, user_id(current_user))
    return {"message": "Service request cancelled successfully", "service_request": serialize(updated)}
