from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal['vehicle-owner', 'repairer', 'seller', 'admin']
OrderStatus = Literal['processing', 'shipped', 'delivered', 'cancelled']
PaymentStatus = Literal['pending', 'completed', 'failed', 'refunded']
ServiceRequestStatus = Literal['pending', 'accepted', 'in-progress', 'completed', 'cancelled']
ReviewTargetType = Literal['product', 'repairer', 'seller', 'service']
ProductCondition = Literal['new', 'used', 'refurbished']


# Shared value objects
class Ratings(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)

class Coordinates(BaseModel):
    latitude: float
    longitude: float

class Location(BaseModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    coordinates: Optional[Coordinates] = None

class ServiceLocation(BaseModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    coordinates: Optional[Coordinates] = None

class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)

class CompatibleVehicle(BaseModel):
    make: str
    model: Optional[str] = None
    year_start: Optional[int] = None
    year_end: Optional[int] = None


# Core domain schemas
class User(BaseModel):
    name: str = Field(..., min_length=2, max_length=80)
    email: EmailStr
    hashed_password: str
    phone_number: Optional[str] = None
    role: Role = 'vehicle-owner'
    avatar_url: Optional[str] = None
    location: Optional[Location] = None
    ratings: Ratings = Field(default_factory=Ratings)
    is_active: bool = True

class Vehicle(BaseModel):
    owner_id: str
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
    maintenance_history: List[str] = []

class Product(BaseModel):
    seller_id: str
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
    images: List[str] = []
    specifications: Dict[str, str] = {}
    ratings: Ratings = Field(default_factory=Ratings)
    is_available: bool = True

class RepairService(BaseModel):
    repairer_id: str
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    subcategory: Optional[str] = None
    base_price: float = Field(..., ge=0)
    estimated_time: str = Field(..., min_length=1)
    images: List[str] = []
    is_available: bool = True
    ratings: Ratings = Field(default_factory=Ratings)

class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    subtotal: float = Field(..., ge=0)

class PaymentDetails(BaseModel):
    transaction_id: Optional[str] = None
    payment_date: Optional[datetime] = None

class Order(BaseModel):
    customer_id: str
    seller_id: str
    products: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    shipping_address: ShippingAddress
    payment_method: str = Field(..., min_length=1)
    payment_status: PaymentStatus = 'pending'
    payment_details: Optional[PaymentDetails] = None
    order_status: OrderStatus = 'processing'
    tracking_number: Optional[str] = None
    shipping_method: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None

class ServiceRequest(BaseModel):
    vehicle_id: str
    owner_id: str
    repairer_id: Optional[str] = None
    service_type: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    status: ServiceRequestStatus = 'pending'
    appointment_date: Optional[datetime] = None
    estimated_completion_date: Optional[datetime] = None
    actual_completion_date: Optional[datetime] = None
    location: Optional[ServiceLocation] = None
    estimated_cost: Optional[float] = Field(None, ge=0)
    final_cost: Optional[float] = Field(None, ge=0)
    images: List[str] = []
    maintenance_record_id: Optional[str] = None

class MaintenanceRecord(BaseModel):
    vehicle_id: str
    service_date: datetime
    service_type: str
    description: str
    mileage: Optional[int] = Field(None, ge=0)
    cost: float = Field(..., ge=0)
    service_provider: Optional[str] = None
    service_request_id: str
    receipts: List[str] = []
    notes: Optional[str] = None

class Helpful(BaseModel):
    count: int = 0
    users: List[str] = []

class ReviewResponse(BaseModel):
    user_id: str
    comment: str
    date: datetime

class Review(BaseModel):
    user_id: str
    target_type: ReviewTargetType
    target_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    comment: str = Field(..., min_length=1)
    images: List[str] = []
    helpful: Helpful = Field(default_factory=Helpful)
    response: Optional[ReviewResponse] = None
    is_verified: bool = False
