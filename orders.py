import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import get_current_active_user, require_roles, user_id
from database import Repository, as_naive_utc, drop_nulls, get_db, serialize
from errors import ConflictError, ForbiddenError, InvalidTransitionError, NotFoundError, validate_body
from lifecycle import authorize_order_update
from schemas import Order, OrderItem, OrderStatus, PaymentDetails, PaymentStatus, ShippingAddress

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


class OrderLineIn(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)

class OrderIn(BaseModel):
    products: List[OrderLineIn] = Field(..., min_length=1)
    seller_id: str = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: str = Field(..., min_length=1)
    shipping_method: Optional[str] = None

class OrderUpdate(BaseModel):
    order_status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = None
    shipping_method: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    payment_details: Optional[PaymentDetails] = None


def _restock(products: Repository, items: List[dict]) -> None:
    for item in items:
        products.update(item["product_id"], {}, inc={"stock": item["quantity"]})


@router.get("")
def list_orders(
    order_status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    query = {}
    if order_status:
        query["order_status"] = order_status
    if payment_status:
        query["payment_status"] = payment_status
    if start_date or end_date:
        query["created_at"] = {}
        if start_date:
            query["created_at"]["$gte"] = as_naive_utc(start_date)
        if end_date:
            query["created_at"]["$lte"] = as_naive_utc(end_date)

    role = current_user.get("role")
    if role == "vehicle-owner":
        query["customer_id"] = user_id(current_user)
    elif role == "seller":
        query["seller_id"] = user_id(current_user)
    elif role != "admin":
        raise ForbiddenError("Access denied")

    orders = Repository(db, "order")
    docs = orders.find(query, sort=[("created_at", -1)], skip=(page - 1) * limit, limit=limit)
    total = orders.count(query)
    return {
        "orders": [serialize(o) for o in docs],
        "pagination": {"total": total, "page": page, "limit": limit, "pages": math.ceil(total / limit)},
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(
    body: OrderIn,
    current_user: dict = Depends(require_roles("vehicle-owner")),
    db: Database = Depends(get_db),
):
    users = Repository(db, "user")
    products = Repository(db, "product")

    seller = users.get(body.seller_id)
    if seller is None or seller.get("role") != "seller":
        raise NotFoundError("Invalid seller")

    items: List[OrderItem] = []
    for line in body.products:
        product = products.get(line.product_id)
        if product is None:
            raise NotFoundError(f"Product with ID {line.product_id} not found")
        if product["seller_id"] != body.seller_id:
            raise InvalidTransitionError(f"Product with ID {line.product_id} does not belong to the specified seller")
        if not product.get("is_available", True):
            raise InvalidTransitionError(f"Product {product['name']} is not available")
        if product["stock"] < line.quantity:
            raise InvalidTransitionError(f"Not enough stock for {product['name']}. Available: {product['stock']}")
        price = product["discount_price"] if product.get("discount_price") is not None else product["price"]
        items.append(OrderItem(
            product_id=line.product_id,
            name=product["name"],
            price=price,
            quantity=line.quantity,
            subtotal=price * line.quantity,
        ))

    # Reserve stock; a decrement only lands while enough stock remains
    reserved: List[dict] = []
    for item in items:
        updated = products.update(
            item.product_id, {},
            extra_filter={"stock": {"$gte": item.quantity}},
            inc={"stock": -item.quantity},
        )
        if updated is None:
            _restock(products, reserved)
            raise InvalidTransitionError(f"Not enough stock for {item.name}")
        reserved.append({"product_id": item.product_id, "quantity": item.quantity})

    order = Order(
        customer_id=user_id(current_user),
        seller_id=body.seller_id,
        products=items,
        total_amount=sum(i.subtotal for i in items),
        shipping_address=body.shipping_address,
        payment_method=body.payment_method,
        shipping_method=body.shipping_method,
    )
    order_repo = Repository(db, "order")
    order_id = order_repo.create(order)
    logger.info("Order %s created by %s for seller %s", order_id, user_id(current_user), body.seller_id)
    return {"message": "Order created successfully", "order": serialize(order_repo.get(order_id))}


@router.get("/{order_id}")
def get_order(order_id: str, current_user: dict = Depends(get_current_active_user), db: Database = Depends(get_db)):
    order = Repository(db, "order").get(order_id)
    if order is None:
        raise NotFoundError("Order not found")
    uid = user_id(current_user)
    if current_user.get("role") != "admin" and uid not in (order["customer_id"], order["seller_id"]):
        raise ForbiddenError("Access denied")
    return serialize(order)


@router.put("/{order_id}")
def update_order(
    order_id: str,
    body: Dict[str, Any] = Body(...),
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    orders = Repository(db, "order")
    order = orders.get(order_id)
    if order is None:
        raise NotFoundError("Order not found")

    # the guard sees every key the caller sent, nulls included, before any type checks
    actor = authorize_order_update(current_user, order, body)
    changes = drop_nulls(validate_body(OrderUpdate, body).model_dump(exclude_unset=True), Order)
    for key in ("estimated_delivery", "actual_delivery"):
        if changes.get(key) is not None:
            changes[key] = as_naive_utc(changes[key])

    restock = changes.get("order_status") == "cancelled" and not order.get("stock_restored")
    if restock:
        changes["stock_restored"] = True
    extra_filter = {"order_status": order["order_status"]} if "order_status" in changes else None
    updated = orders.update(order_id, changes, extra_filter=extra_filter)
    if updated is None:
        raise ConflictError("Order status changed while updating, please retry")

    if restock:
        _restock(Repository(db, "product"), order["products"])
    if "order_status" in changes:
        logger.info("Order %s moved %s -> %s by %s", order_id, order["order_status"],
                    changes["order_status"], actor)
    return serialize(updated)
