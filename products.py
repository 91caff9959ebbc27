import logging
import re
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import get_current_active_user, require_roles, user_id
from database import Repository, drop_nulls, get_db, serialize
from errors import ForbiddenError, NotFoundError
from schemas import CompatibleVehicle, Product, ProductCondition

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    compatible_vehicles: List[CompatibleVehicle] = []
    condition: ProductCondition = 'new'
    price: float = Field(..., ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(..., ge=0)
    images: List[str] = Field(..., min_length=1)
    specifications: Dict[str, str] = {}
    is_available: bool = True
    # admins create on behalf of a seller
    seller_id: Optional[str] = None

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1)
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    compatible_vehicles: Optional[List[CompatibleVehicle]] = None
    condition: Optional[ProductCondition] = None
    price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = Field(None, min_length=1)
    specifications: Optional[Dict[str, str]] = None
    is_available: Optional[bool] = None


def fits_vehicle(product: dict, make: str, model: Optional[str] = None, year: Optional[int] = None) -> bool:
    for vehicle in product.get("compatible_vehicles", []):
        if vehicle.get("make", "").lower() != make.lower():
            continue
        if model and (vehicle.get("model") or "").lower() != model.lower():
            continue
        if year is not None:
            if vehicle.get("year_start") and year < vehicle["year_start"]:
                continue
            if vehicle.get("year_end") and year > vehicle["year_end"]:
                continue
        return True
    return False


def _exact(value: str):
    return re.compile("^" + re.escape(value) + "$", re.IGNORECASE)


def _load_owned(db: Database, product_id: str, current_user: dict, action: str) -> dict:
    product = Repository(db, "product").get(product_id)
    if product is None:
        raise NotFoundError("Product not found")
    is_owner = current_user.get("role") == "seller" and product["seller_id"] == user_id(current_user)
    if current_user.get("role") != "admin" and not is_owner:
        raise ForbiddenError(f"You do not have permission to {action} this product")
    return product


@router.get("")
def list_products(
    seller_id: Optional[str] = None,
    category: Optional[str] = None,
    make: Optional[str] = None,
    model: Optional[str] = None,
    year: Optional[int] = None,
    condition: Optional[ProductCondition] = None,
    db: Database = Depends(get_db),
):
    query = {}
    if seller_id:
        query["seller_id"] = seller_id
    if category:
        query["category"] = _exact(category)
    if condition:
        query["condition"] = condition

    products = Repository(db, "product").find(query, sort=[("created_at", -1)])
    if make:
        products = [p for p in products if fits_vehicle(p, make, model, year)]
    return {"products": [serialize(p) for p in products]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(
    body: ProductIn,
    current_user: dict = Depends(require_roles("seller", "admin")),
    db: Database = Depends(get_db),
):
    data = body.model_dump(exclude={"seller_id"})
    if current_user["role"] == "seller":
        seller_id = user_id(current_user)
    else:
        seller = Repository(db, "user").get(body.seller_id) if body.seller_id else None
        if seller is None or seller.get("role") != "seller":
            raise NotFoundError("Invalid seller")
        seller_id = body.seller_id

    products = Repository(db, "product")
    product_id = products.create(Product(seller_id=seller_id, **data))
    logger.info("Product %s listed by seller %s", product_id, seller_id)
    return {"product": serialize(products.get(product_id))}


@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = Repository(db, "product").get(product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return serialize(product)


@router.put("/{product_id}")
def update_product(
    product_id: str,
    body: ProductUpdate,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    _load_owned(db, product_id, current_user, "update")
    changes = drop_nulls(body.model_dump(exclude_unset=True), Product)
    return serialize(Repository(db, "product").update(product_id, changes))


@router.delete("/{product_id}")
def delete_product(
    product_id: str,
    current_user: dict = Depends(get_current_active_user),
    db: Database = Depends(get_db),
):
    _load_owned(db, product_id, current_user, "delete")
    Repository(db, "product").delete(product_id)
    logger.info("Product %s deleted by %s", product_id, user_id(current_user))
    return {"message": "Product deleted successfully"}
