"""
Completing a service request.

Completion writes three documents: a new maintenance record, the service
request (status, cost and a link to the record), and the vehicle's
maintenance history. MongoDB gives no cross-document atomicity without a
replica set, so each later step undoes the earlier ones if it fails.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pymongo.database import Database

from database import Repository, as_naive_utc, utcnow
from errors import InvalidTransitionError, NotFoundError
from schemas import MaintenanceRecord

logger = logging.getLogger(__name__)

# A request can only be completed from these states
COMPLETABLE_STATUSES = ["pending", "accepted", "in-progress"]


class CompletionIn(BaseModel):
    final_cost: float = Field(..., ge=0)
    service_date: datetime
    mileage: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None
    receipts: List[str] = []


def complete_service_request(
    db: Database,
    request: dict,
    completion: CompletionIn,
    extra_changes: Optional[Dict[str, Any]] = None,
) -> Dict[str, dict]:
    requests = Repository(db, "service_request")
    records = Repository(db, "maintenance_record")
    vehicles = Repository(db, "vehicle")
    request_id = str(request["_id"])

    if vehicles.get(request["vehicle_id"]) is None:
        raise NotFoundError("Vehicle for this service request not found")

    record_id = records.create(MaintenanceRecord(
        vehicle_id=request["vehicle_id"],
        service_date=as_naive_utc(completion.service_date),
        service_type=request["service_type"],
        description=request["description"],
        mileage=completion.mileage,
        cost=completion.final_cost,
        service_provider=request.get("repairer_id"),
        service_request_id=request_id,
        receipts=completion.receipts,
        notes=completion.notes,
    ))

    changes = dict(extra_changes or {})
    changes.update({
        "status": "completed",
        "final_cost": completion.final_cost,
        "actual_completion_date": utcnow(),
        "maintenance_record_id": record_id,
    })
    updated = requests.update(request_id, changes, extra_filter={"status": {"$in": COMPLETABLE_STATUSES}})
    if updated is None:
        # someone completed or cancelled it since we read it
        records.delete(record_id)
        logger.warning("Service request %s changed state during completion; discarded record %s",
                       request_id, record_id)
        raise InvalidTransitionError("Service request is already completed or cancelled")

    try:
        vehicles.update(request["vehicle_id"], {}, addToSet={"maintenance_history": record_id})
    except Exception:
        logger.warning("Rolling back completion of service request %s", request_id)
        requests.restore(request)
        records.delete(record_id)
        raise

    logger.info("Service request %s completed; maintenance record %s", request_id, record_id)
    return {"service_request": updated, "maintenance_record": records.get(record_id)}
