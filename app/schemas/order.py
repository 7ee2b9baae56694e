import uuid
from datetime import datetime
from enum import Enum
from typing import Any
from pydantic import Field

from app.schemas.base import CamelModel

class DeliveryStatus(str, Enum):
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    DELIVERY_FAILED = "delivery_failed"
    RETURNED = "returned"
    CANCELLED = "cancelled"

class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class LineItem(CamelModel):
    product: str | None = None
    quantity: int = 1
    price: float = 0
    name: str | None = None

class CustomerInfo(CamelModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    mobile: str | None = None

class ShippingAddress(CamelModel):
    street: str | None = None
    city: str | None = None
    country: str | None = None

class Order(CamelModel):
    id: uuid.UUID | None = None
    order_number: str | None = None
    status: OrderStatus = OrderStatus.PENDING
    items: list[LineItem] = Field(default_factory=list)
    customer_info: CustomerInfo = Field(default_factory=CustomerInfo)
    shipping_address: ShippingAddress = Field(default_factory=ShippingAddress)
    total_amount: float = 0
    currency: str = "USD"
    delivery_notes: str | None = None
    shipping_fee: float = 0
    delivery_company: uuid.UUID | None = None
    delivery_status: DeliveryStatus | None = None
    delivery_tracking_number: str | None = None
    tracking_number: str | None = None
    delivery_response: Any = None
    delivery_assigned_at: datetime | None = None
    delivery_fee: float = 0
    created_at: datetime | None = None

    @property
    def reference(self) -> str:
        return self.order_number or str(self.id or "")

    @property
    def effective_shipping_fee(self) -> float:
        if self.shipping_fee and self.shipping_fee > 0:
            return self.shipping_fee
        return self.delivery_fee or 0

    @property
    def total_with_shipping(self) -> float:
        base = self.total_amount or 0
        ship = self.effective_shipping_fee
        subtotal = sum(item.price * item.quantity for item in self.items)
        # totalAmount may already include shipping
        if subtotal > 0 and abs((base - subtotal) - ship) < 0.0001:
            return base
        return base + ship

    def as_document(self) -> dict[str, Any]:
        """camelCase view used by dotted-path field mappings"""
        document = self.model_dump(by_alias=True, mode="json")
        document["totalWithShipping"] = self.total_with_shipping
        return document
