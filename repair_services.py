import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import get_current_active_user, require_roles, user_id
from database import Repository, drop_nulls, get_db, serialize
from errors import ForbiddenError, NotFoundError
from schemas import RepairService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/repair-services", tags=["repair-services"])


class RepairServiceIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    subcategory: Optional[str] = None
    base_price: float = Field(..., ge=0)
    estimated_time: str = Field(..., min_length=1)
    images: List[str] = []
    is_available: bool = True

class RepairServiceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1)
    subcategory: Optional[str] = None
    base_price: Optional[float] = Field(None, ge=0)
    estimated_time: Optional[str] = Field(None, min_length=1)
    images: Optional[List[str]] = None
    is_available: Optional[bool] = None


def _load_owned(db: Database, service_id: str, current_user: dict, action: str) -> dict:
    service = Repository(db, "repair_service").get(service_id)
    if service is None:
        raise NotFoundError("Service not found")
    is_owner = current_user.get("role") == "repairer" and service["repairer_id"] == user_id(current_user)
    if current_user.get("role") != "admin" and not is_owner:
        raise ForbiddenError(f"You do not have permission to {action} this service")
    return service


@router.get("")
def list_repair_services(
    repairer_id: Optional[str] = None,
    category: Optional[str] = None,
    db: Database = Depends(get_db),
):
    query = {}
    if repairer_id:
        query["repairer_id"] = repairer_id
    if category:
        query["category"] = category
    docs = Repository(db, "repair_service").find(query, sort=[("created_at", -1)])
    return {"repair_services": [serialize(d) for d in docs]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_repair_service(
    body: RepairServiceIn,
    current_user: dict = Depends(require_roles("repairer")),
    db: Database = Depends(get_db),
):
    services = Repository(db, "repair_service")
    service_id = services.create(RepairService(repairer_id=user_id(current_user), **body.model_dump()))
    logger.info("Repair service %s offered by %s", service_id, user_id(current_user))
    return {"repair_service": serialize(services.get(service_id))}


@router.get("/{service_id}")
def get_repair_service(service_id: str, db: Database = Depends(get_db)):
    service = Repository(db, "repair_service").get(service_id)
    if service is None:
        raise NotFoundError("Service not found")
    return serialize(service)


@router.put("/{service_id}")
def update_repair_service(
    service_id: str,
    body: RepairServiceUpdate,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    _load_owned(db, service_id, current_user, "update")
    changes = drop_nulls(body.model_dump(exclude_unset=True), RepairService)
    return serialize(Repository(db, "repair_service").update(service_id, changes))


@router.delete("/{service_id}")
def delete_repair_service(
    service_id: str,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    _load_owned(db, service_id, current_user, "delete")
    Repository(db, "repair_service").delete(service_id)
    return {"message": "Service deleted successfully"}
