import uuid
from typing import Any, Literal
from pydantic import Field

from app.schemas.base import CamelModel
from app.schemas.delivery_company import FieldMappingRule
from app.schemas.order import DeliveryStatus, OrderStatus

class MissingField(CamelModel):
    source_field: str
    target_field: str

class MappingCheck(CamelModel):
    ok: bool
    missing: list[MissingField] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)

class ConfigCheck(CamelModel):
    ok: bool
    issues: list[str] = Field(default_factory=list)
    mode: Literal["test", "live"]
    url: str = ""

class DispatchResult(CamelModel):
    tracking_number: str | None = None
    provider_response: Any = None
    provider_status: str = "created"

class StatusReport(CamelModel):
    status: str
    tracking_number: str | None = None
    estimated_delivery: Any = None
    events: list[Any] = Field(default_factory=list)

class SendOrderRequest(CamelModel):
    order_id: uuid.UUID
    company_id: uuid.UUID | None = None
    company_code: str | None = None
    delivery_fee: float = 0

class LegacySendRequest(CamelModel):
    order: dict[str, Any]
    company_id: uuid.UUID
    mapped_data: dict[str, Any] | None = None

class BatchSendRequest(CamelModel):
    order_ids: list[uuid.UUID]
    company_id: uuid.UUID | None = None
    company_code: str | None = None
    delivery_fee: float = 0
    stop_on_error: bool = False

class BatchAssignRequest(CamelModel):
    order_ids: list[uuid.UUID]
    company_id: uuid.UUID
    tracking_number: str | None = None
    delivery_status: DeliveryStatus | None = None
    order_status: OrderStatus | None = None

class ValidateMappingsRequest(CamelModel):
    order_id: uuid.UUID
    company_id: uuid.UUID

class BulkValidateMappingsRequest(CamelModel):
    order_id: uuid.UUID
    company_ids: list[uuid.UUID] | None = None
    active_only: bool = True

class FieldMappingsUpdate(CamelModel):
    field_mappings: list[FieldMappingRule] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)

class FeeRequest(CamelModel):
    total_amount: float = 0
