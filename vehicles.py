import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import get_current_active_user, require_roles, user_id
from database import Repository, get_db, serialize
from errors import ConflictError, ForbiddenError, NotFoundError
from schemas import Vehicle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vehicles", tags=["vehicles"])


class VehicleIn(BaseModel):
    make: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    year: int = Field(..., ge=1900)
    registration_number: str = Field(..., min_length=1)
    vin: Optional[str] = None
    color: Optional[str] = None
    fuel_type: Optional[str] = None
    engine_size: Optional[str] = None
    transmission_type: Optional[str] = None
    images: List[str] = []


def _load_visible(db: Database, vehicle_id: str, current_user: dict) -> dict:
    vehicle = Repository(db, "vehicle").get(vehicle_id)
    if vehicle is None:
        raise NotFoundError("Vehicle not found")
    if current_user.get("role") != "admin" and vehicle["owner_id"] != user_id(current_user):
        raise ForbiddenError("Access denied")
    return vehicle


@router.get("")
def list_vehicles(
    make: Optional[str] = None,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    query = {}
    if current_user.get("role") != "admin":
        query["owner_id"] = user_id(current_user)
    if make:
        query["make"] = re.compile(re.escape(make), re.IGNORECASE)
    return {"vehicles": [serialize(v) for v in Repository(db, "vehicle").find(query)]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_vehicle(
    body: VehicleIn,
    current_user: dict = Depends(require_roles("vehicle-owner")),
    db: Database = Depends(get_db),
):
    vehicles = Repository(db, "vehicle")
    if vehicles.find_one({"registration_number": body.registration_number}):
        raise ConflictError("registration_number already exists")
    vehicle_id = vehicles.create(Vehicle(owner_id=user_id(current_user), **body.model_dump()))
    logger.info("Vehicle %s registered by %s", vehicle_id, user_id(current_user))
    return {"vehicle": serialize(vehicles.get(vehicle_id))}


@router.get("/{vehicle_id}")
def get_vehicle(vehicle_id: str, current_user: dict = Depends(get_current_active_user), db: Database = Depends(get_db)):
    return serialize(_load_visible(db, vehicle_id, current_user))


@router.get("/{vehicle_id}/maintenance")
def get_maintenance_history(
    vehicle_id: str,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    vehicle = _load_visible(db, vehicle_id, current_user)
    records = Repository(db, "maintenance_record").find({"vehicle_id": vehicle_id}, sort=[("service_date", -1)])
    return {"vehicle_id": vehicle_id, "maintenance_history": [serialize(r) for r in records],
            "record_ids": vehicle.get("maintenance_history", [])}


@router.delete("/{vehicle_id}")
def delete_vehicle(
    vehicle_id: str,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    _load_visible(db, vehicle_id, current_user)
    Repository(db, "vehicle").delete(vehicle_id)
    logger.info("Vehicle %s deleted by %s", vehicle_id, user_id(current_user))
    return {"message": "Vehicle deleted successfully"}
