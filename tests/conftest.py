import itertools
import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.pop("DATABASE_URL", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, get_password_hash
from database import Repository, ensure_indexes, get_db
from main import app
from schemas import (
    Order,
    OrderItem,
    Product,
    RepairService,
    ServiceRequest,
    ShippingAddress,
    User,
    Vehicle,
)

ADDRESS = {
    "full_name": "Ada Driver",
    "street": "1 Garage Lane",
    "city": "Pune",
    "state": "MH",
    "postal_code": "411001",
    "country": "IN",
    "phone": "+91-555-0100",
}

_seq = itertools.count(1)


def auth_header(email: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': email})}"}


@pytest.fixture
def db():
    database = mongomock.MongoClient()["shopmeco_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Create a user and return `(document, auth headers)`."""
    def _make(role="vehicle-owner", is_active=True, password="secret123"):
        n = next(_seq)
        email = f"{role}{n}@example.com"
        users = Repository(db, "user")
        uid = users.create(User(
            name=f"{role.title()} {n}",
            email=email,
            hashed_password=get_password_hash(password),
            role=role,
            is_active=is_active,
        ))
        return users.get(uid), auth_header(email)
    return _make


@pytest.fixture
def make_product(db):
    def _make(seller, **overrides):
        data = {
            "seller_id": str(seller["_id"]),
            "name": "Brake pads",
            "description": "Ceramic front pads",
            "category": "Brakes",
            "price": 40.0,
            "stock": 10,
            "images": ["pads.jpg"],
        }
        data.update(overrides)
        products = Repository(db, "product")
        return products.get(products.create(Product(**data)))
    return _make


@pytest.fixture
def make_order(db):
    def _make(customer, seller, product, quantity=1, order_status="processing"):
        item = OrderItem(
            product_id=str(product["_id"]),
            name=product["name"],
            price=product["price"],
            quantity=quantity,
            subtotal=product["price"] * quantity,
        )
        orders = Repository(db, "order")
        order_id = orders.create(Order(
            customer_id=str(customer["_id"]),
            seller_id=str(seller["_id"]),
            products=[item],
            total_amount=item.subtotal,
            shipping_address=ShippingAddress(**ADDRESS),
            payment_method="card",
            order_status=order_status,
        ))
        return orders.get(order_id)
    return _make


@pytest.fixture
def make_vehicle(db):
    def _make(owner, **overrides):
        data = {
            "owner_id": str(owner["_id"]),
            "make": "Toyota",
            "model": "Corolla",
            "year": 2018,
            "registration_number": f"MH12AB{next(_seq):04d}",
        }
        data.update(overrides)
        vehicles = Repository(db, "vehicle")
        return vehicles.get(vehicles.create(Vehicle(**data)))
    return _make


@pytest.fixture
def make_service_request(db):
    def _make(owner, vehicle, repairer=None, status="pending", service_type="Oil change"):
        requests = Repository(db, "service_request")
        request_id = requests.create(ServiceRequest(
            vehicle_id=str(vehicle["_id"]),
            owner_id=str(owner["_id"]),
            repairer_id=str(repairer["_id"]) if repairer else None,
            service_type=service_type,
            description="Engine oil and filter replacement",
            status=status,
        ))
        return requests.get(request_id)
    return _make


@pytest.fixture
def make_repair_service(db):
    def _make(repairer, name="Oil change"):
        services = Repository(db, "repair_service")
        return services.get(services.create(RepairService(
            repairer_id=str(repairer["_id"]),
            name=name,
            description="Full synthetic oil change",
            category="Maintenance",
            base_price=60.0,
            estimated_time="1 hour",
        )))
    return _make
