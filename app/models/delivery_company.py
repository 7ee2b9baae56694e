import uuid
from datetime import datetime
from typing import Any
from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field

from app.schemas.delivery_company import DeliveryCompany, DeliveryCompanyBase

# Queried columns live on the row; the rest of the configuration is one JSON document
COLUMN_FIELDS = {"name", "code", "is_active", "is_default", "auto_dispatch_on_order_create"}

class DeliveryCompanyRecord(SQLModel, table=True):
    __tablename__ = "delivery_companies"
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(unique=True, index=True)
    code: str | None = Field(default=None, index=True)
    is_active: bool = Field(default=True)
    is_default: bool = Field(default=False)
    auto_dispatch_on_order_create: bool = Field(default=False)
    config: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_schema(cls, company: DeliveryCompanyBase) -> "DeliveryCompanyRecord":
        record = cls(name=company.name)
        record.apply(company.model_dump(mode="json"))
        return record

    def apply(self, data: dict[str, Any]):
        """Write snake_case company fields onto the row and its JSON document"""
        config = dict(self.config or {})
        for key, value in data.items():
            if key == "id":
                continue
            if key in COLUMN_FIELDS:
                setattr(self, key, value)
            else:
                config[key] = value
        self.config = config
        self.updated_at = datetime.now()

    def to_schema(self) -> DeliveryCompany:
        return DeliveryCompany.model_validate({
            **(self.config or {}),
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "is_default": self.is_default,
            "auto_dispatch_on_order_create": self.auto_dispatch_on_order_create,
        })
