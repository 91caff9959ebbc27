"""
Role-based lifecycle guards for orders and service requests.

Who may change what is decided by table lookups rather than nested branches:

- the *actor* is the caller's relation to the record (``admin``, ``seller``,
  ``customer`` for orders; ``admin``, ``owner``, ``repairer``, ``acceptor``
  for service requests),
- ``*_FIELDS[actor]`` lists the fields that actor may send,
- ``*_TRANSITIONS[(actor, current)]`` lists the statuses that actor may move
  the record to from ``current``.

Guards never touch the database; they raise the errors from ``errors`` or
return the changes to apply.
"""

from typing import Dict, FrozenSet, Optional, Tuple

from errors import ForbiddenError, InvalidTransitionError, MissingFieldError


ORDER_STATUSES = frozenset({"processing", "shipped", "delivered", "cancelled"})
SERVICE_REQUEST_STATUSES = frozenset({"pending", "accepted", "in-progress", "completed", "cancelled"})


# --------------------------------------------------------------------------
# Orders
# --------------------------------------------------------------------------

SELLER_ORDER_FIELDS = frozenset(
    {"order_status", "tracking_number", "shipping_method", "estimated_delivery", "actual_delivery"}
)

ORDER_FIELDS: Dict[str, FrozenSet[str]] = {
    "seller": SELLER_ORDER_FIELDS,
    "customer": frozenset({"order_status"}),
}

# Statuses an actor may ever request, regardless of the current one
ORDER_TARGETS: Dict[str, FrozenSet[str]] = {
    "seller": ORDER_STATUSES,
    "customer": frozenset({"cancelled"}),
}

ORDER_TRANSITIONS: Dict[Tuple[str, str], FrozenSet[str]] = {
    ("seller", "processing"): frozenset({"processing", "shipped", "delivered", "cancelled"}),
    ("seller", "shipped"): frozenset({"processing", "shipped", "delivered"}),
    ("seller", "delivered"): frozenset({"processing", "shipped", "delivered"}),
    ("seller", "cancelled"): frozenset(),
    ("customer", "processing"): frozenset({"cancelled"}),
}


def order_actor(user: dict, order: dict) -> Optional[str]:
    uid = str(user["_id"])
    role = user.get("role")
    if role == "admin":
        return "admin"
    if role == "seller" and order.get("seller_id") == uid:
        return "seller"
    if role == "vehicle-owner" and order.get("customer_id") == uid:
        return "customer"
    return None


def check_order_transition(actor: str, current: str, requested) -> None:
    if actor == "admin":
        return
    if not isinstance(requested, str) or requested not in ORDER_STATUSES:
        raise InvalidTransitionError(f"Invalid order status '{requested}'")
    if requested not in ORDER_TARGETS.get(actor, ()):
        raise ForbiddenError("You can only cancel the order")
    if requested not in ORDER_TRANSITIONS.get((actor, current), ()):
        if current == "cancelled":
            raise InvalidTransitionError("Order is already cancelled")
        if requested == "cancelled" and actor == "customer":
            raise InvalidTransitionError("Orders can only be cancelled while in processing state")
        if requested == "cancelled":
            raise InvalidTransitionError("Cannot cancel an order that has been shipped or delivered")
        raise InvalidTransitionError(f"Cannot move order from '{current}' to '{requested}'")


def authorize_order_update(user: dict, order: dict, changes: Dict) -> str:
    """Validate `changes` against the order guard and return the caller's actor name."""
    actor = order_actor(user, order)
    if actor is None:
        raise ForbiddenError("You do not have permission to update this order")
    if actor == "admin":
        return actor

    if actor == "customer" and changes.get("order_status") is None:
        raise ForbiddenError("You can only update the order status")
    illegal = set(changes) - ORDER_FIELDS[actor]
    if illegal:
        raise ForbiddenError("You do not have permission to update these fields: " + ", ".join(sorted(illegal)))

    requested = changes.get("order_status")
    if requested is not None:
        check_order_transition(actor, order["order_status"], requested)
    return actor


# --------------------------------------------------------------------------
# Service requests
# --------------------------------------------------------------------------

# Status pairs nobody may move between, admins included
BLOCKED_SERVICE_REQUEST_MOVES: Dict[Tuple[str, str], str] = {
    ("completed", "completed"): "Service request is already completed",
    ("cancelled", "completed"): "Cannot complete a cancelled service request",
    ("completed", "cancelled"): "Cannot cancel a completed service request",
}

SERVICE_REQUEST_TRANSITIONS: Dict[Tuple[str, str], FrozenSet[str]] = {
    ("owner", "pending"): frozenset({"cancelled"}),
    ("owner", "cancelled"): frozenset({"pending"}),
    ("repairer", "pending"): frozenset({"accepted", "cancelled"}),
    ("repairer", "accepted"): frozenset({"in-progress", "completed", "cancelled"}),
    ("repairer", "in-progress"): frozenset({"completed", "cancelled"}),
    ("acceptor", "pending"): frozenset({"accepted"}),
}

# Statuses in which an owner may still edit their own request
OWNER_EDITABLE_STATUSES = frozenset({"pending", "cancelled"})


def service_request_actor(user: dict, request: dict, requested: Optional[str] = None) -> Optional[str]:
    uid = str(user["_id"])
    if user.get("role") == "admin":
        return "admin"
    if request.get("owner_id") == uid:
        return "owner" if request["status"] in OWNER_EDITABLE_STATUSES else None
    if user.get("role") == "repairer":
        if request.get("repairer_id") == uid:
            return "repairer"
        if not request.get("repairer_id") and request["status"] == "pending" and requested == "accepted":
            return "acceptor"
    return None


def check_service_request_transition(actor: str, current: str, requested: str) -> None:
    blocked = BLOCKED_SERVICE_REQUEST_MOVES.get((current, requested))
    if blocked:
        raise InvalidTransitionError(blocked)
    if requested == current or actor == "admin":
        return
    if requested not in SERVICE_REQUEST_TRANSITIONS.get((actor, current), ()):
        raise InvalidTransitionError(f"Cannot move service request from '{current}' to '{requested}'")


def authorize_service_request_update(user: dict, request: dict, changes: Dict) -> Tuple[str, Dict]:
    """Return the caller's actor name and the changes to apply.

    An accepting repairer gets `repairer_id` added to the changes.
    """
    requested = changes.get("status")
    actor = service_request_actor(user, request, requested)
    if actor is None:
        raise ForbiddenError("You do not have permission to update this service request")

    changes = dict(changes)
    if actor == "acceptor":
        changes["repairer_id"] = str(user["_id"])

    if requested is not None:
        check_service_request_transition(actor, request["status"], requested)
        if requested == "completed" and changes.get("final_cost") is None:
            raise MissingFieldError("Final cost is required when completing a service")
    return actor, changes


def check_can_complete(request: dict) -> None:
    check_service_request_transition("admin", request["status"], "completed")


def check_can_cancel(request: dict) -> None:
    if request["status"] == "cancelled":
        raise InvalidTransitionError("Service request is already cancelled")
    check_service_request_transition("admin", request["status"], "cancelled")


def can_cancel_service_request(user: dict, request: dict) -> bool:
    uid = str(user["_id"])
    return (
        user.get("role") == "admin"
        or request.get("owner_id") == uid
        or (user.get("role") == "repairer" and request.get("repairer_id") == uid)
    )
