"""
Database Schemas for the Storefront

Each Pydantic model represents a MongoDB collection.
Collection name is the lowercase of the class name.

- User -> "user"
- Category -> "category"
- Product -> "product"
- Order -> "order"
- PaymentAttempt -> "paymentattempt"

References to other collections are stored as ObjectIds and resolved at
read time (see database.populate).
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

MAX_PHOTO_BYTES = 1_000_000


class Role(int, Enum):
    USER = 0
    ADMIN = 1


class OrderStatus(str, Enum):
    NOT_PROCESS = "Not Process"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCEL = "Cancel"


class PaymentState(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"
    FAILED = "failed"


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True, validate_default=True)


class User(Document):
    name: str
    email: str
    password: str
    phone: str
    address: Any
    answer: str
    role: Role = Role.USER


class Category(Document):
    name: str
    slug: str


class Photo(BaseModel):
    data: bytes
    content_type: str = "application/octet-stream"


class Product(Document):
    name: str
    slug: str
    description: str
    price: float = Field(..., ge=0)
    category: ObjectId
    quantity: int = Field(..., ge=0)
    shipping: Optional[bool] = None
    photo: Optional[Photo] = None


class Order(Document):
    # Entries are product ObjectIds; cart lines sent without an id are kept as snapshots
    products: List[Any] = Field(..., min_length=1)
    payment: Dict[str, Any]
    buyer: ObjectId
    status: OrderStatus = OrderStatus.NOT_PROCESS


class PaymentAttempt(Document):
    buyer: ObjectId
    products: List[Any]
    amount: str
    state: PaymentState = PaymentState.PENDING
    order_id: Optional[ObjectId] = None
    gateway_result: Optional[Dict[str, Any]] = None


# Request bodies. Required-ness is checked by the services so that each
# missing field gets its own message instead of a generic 422.

class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Any] = None
    answer: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: Optional[str] = None
    answer: Optional[str] = None
    newPassword: Optional[str] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Any] = None


class CategoryRequest(BaseModel):
    name: Optional[str] = None


class FilterRequest(BaseModel):
    checked: Optional[List[str]] = None
    radio: Optional[List[Optional[float]]] = None


class PaymentRequest(BaseModel):
    nonce: Optional[str] = None
    cart: Optional[List[Dict[str, Any]]] = None


class OrderStatusUpdate(BaseModel):
    status: Optional[str] = None
