from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, PlainSerializer

# fixed-point in the database, plain JSON number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    status: str = "success"
    message: Optional[str] = None
    data: Optional[T] = None


# ----- Requests -----

class OrderItemRequest(BaseModel):
    menu_item_id: int
    quantity: int = Field(gt=0)


class CreateOrderRequest(BaseModel):
    restaurant_id: int
    address_id: int
    items: List[OrderItemRequest] = Field(min_length=1)


class PaymentCallbackRequest(BaseModel):
    order_id: int
    payment_status: str


# ----- Responses -----

class OrderCreated(BaseModel):
    order_id: int
    status: str
    total_price: Money
    payment_id: Optional[int]

    class Config:
        from_attributes = True


class OrderState(BaseModel):
    order_id: int
    status: str
    driver_id: Optional[int] = None
    payment_id: Optional[int] = None
    estimated_delivery_time: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderSummary(BaseModel):
    order_id: int
    restaurant_name: str
    status: str
    total_price: Money
    created_at: datetime


class OrderLine(BaseModel):
    name: str
    quantity: int
    price: Money


class RestaurantDetails(BaseModel):
    name: str
    address: str


class OrderDetails(BaseModel):
    order_id: int
    status: str
    restaurant_details: RestaurantDetails
    delivery_address: str
    driver_details: Optional[dict[str, Any]] = None
    payment_id: Optional[int] = None
    items: List[OrderLine]
    total_price: Money
    estimated_delivery: Optional[datetime] = None


class DriverOrderLine(BaseModel):
    menu_item_name: str
    quantity: int
    price: Money


class DriverOrderView(BaseModel):
    order_id: int
    restaurant_name: str
    customer_name: str
    customer_address: str
    status: str
    total_price: Money
    created_at: datetime
    estimated_delivery_time: Optional[datetime] = None
    items: List[DriverOrderLine]


class ReconcileResult(BaseModel):
    order_id: int
    status: str
    payment_id: Optional[int] = None
    performed_steps: List[str]
