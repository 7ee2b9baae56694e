import uuid
from datetime import datetime
from typing import Any
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field

from app.schemas.order import Order

JSON_FIELDS = {"items", "customer_info", "shipping_address", "delivery_response"}

class OrderRecord(SQLModel, table=True):
    __tablename__ = "orders"
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    order_number: str = Field(unique=True, index=True)
    status: str = Field(default="pending", index=True)
    items: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    customer_info: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    shipping_address: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    total_amount: float = Field(default=0)
    currency: str = Field(default="USD")
    delivery_notes: str | None = Field(default=None)
    shipping_fee: float = Field(default=0)
    delivery_company: uuid.UUID | None = Field(default=None, foreign_key="delivery_companies.id", index=True)
    delivery_status: str | None = Field(default=None, index=True)
    delivery_tracking_number: str | None = Field(default=None, index=True)
    tracking_number: str | None = Field(default=None)
    delivery_response: Any = Field(default=None, sa_column=Column(JSON, nullable=True))
    delivery_assigned_at: datetime | None = Field(default=None, index=True)
    delivery_fee: float = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_schema(cls, order: Order) -> "OrderRecord":
        data = order.model_dump(mode="json", exclude={"id", "created_at", "delivery_assigned_at", "delivery_company"})
        record = cls(**{k: v for k, v in data.items() if k not in JSON_FIELDS})
        for key in JSON_FIELDS:
            setattr(record, key, data[key])
        record.delivery_company = order.delivery_company
        record.delivery_assigned_at = order.delivery_assigned_at
        if order.id is not None:
            record.id = order.id
        return record

    def to_schema(self) -> Order:
        return Order.model_validate(self.model_dump())
