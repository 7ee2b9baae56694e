import uuid
from contextlib import asynccontextmanager
import httpx
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse

from app.agents.courier import CourierAgent
from app.agents.postgres import PostgresAgent
from app.config import settings
from app.errors import DeliveryError, NotFoundError
from app.logs import logger, setup_logging
from app.schemas.delivery_company import CompanyUpdate, DeliveryCompanyBase
from app.schemas.dispatch import (
    BatchAssignRequest,
    BatchSendRequest,
    BulkValidateMappingsRequest,
    FeeRequest,
    FieldMappingsUpdate,
    LegacySendRequest,
    SendOrderRequest,
    ValidateMappingsRequest,
)
from app.schemas.order import Order
from app.sync import delivery

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    client = httpx.AsyncClient()
    app.state.postgres = PostgresAgent()
    app.state.courier = CourierAgent(settings.hub(), client)
    yield
    await client.aclose()
    await app.state.postgres.engine.dispose()

app = FastAPI(lifespan=lifespan)

def get_postgres_agent(request: Request) -> PostgresAgent:
    return request.app.state.postgres

def get_courier_agent(request: Request) -> CourierAgent:
    return request.app.state.courier

@app.exception_handler(DeliveryError)
async def delivery_error_handler(request: Request, exc: DeliveryError):
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())

@app.get("/delivery/companies")
async def list_companies(postgres: PostgresAgent = Depends(get_postgres_agent)):
    companies = await postgres.list_companies()
    return [c.model_dump(by_alias=True, mode="json") for c in companies]

@app.get("/delivery/companies/public/active")
async def list_active_companies(postgres: PostgresAgent = Depends(get_postgres_agent)):
    companies = await postgres.list_companies(active_only=True)
    return [c.model_dump(by_alias=True, mode="json") for c in companies]

@app.post("/delivery/companies", status_code=status.HTTP_201_CREATED)
async def create_company(body: DeliveryCompanyBase, postgres: PostgresAgent = Depends(get_postgres_agent)):
    body.status_mapping = delivery.sanitize_status_mapping(body.status_mapping)
    company = await postgres.insert_company(body)
    return company.model_dump(by_alias=True, mode="json")

@app.get("/delivery/companies/{company_id}")
async def get_company(company_id: uuid.UUID, postgres: PostgresAgent = Depends(get_postgres_agent)):
    company = await delivery.get_company_or_404(postgres, company_id)
    return company.model_dump(by_alias=True, mode="json")

@app.put("/delivery/companies/{company_id}")
async def update_company(company_id: uuid.UUID, body: CompanyUpdate, postgres: PostgresAgent = Depends(get_postgres_agent)):
    if body.status_mapping is not None:
        body.status_mapping = delivery.sanitize_status_mapping(body.status_mapping)
    data = body.model_dump(mode="json", exclude_unset=True)
    company = await postgres.update_company(company_id, data)
    if company is None:
        raise NotFoundError("Delivery company not found")
    return company.model_dump(by_alias=True, mode="json")

@app.delete("/delivery/companies/{company_id}")
async def delete_company(company_id: uuid.UUID, postgres: PostgresAgent = Depends(get_postgres_agent)):
    if not await postgres.delete_company(company_id):
        raise NotFoundError("Delivery company not found")
    return {"message": "Delivery company deleted successfully"}

@app.put("/delivery/companies/{company_id}/field-mappings")
async def update_field_mappings(company_id: uuid.UUID, body: FieldMappingsUpdate, postgres: PostgresAgent = Depends(get_postgres_agent)):
    company = await delivery.get_company_or_404(postgres, company_id)
    data = {
        "field_mappings": [rule.model_dump(mode="json") for rule in body.field_mappings],
        "custom_fields": body.custom_fields,
        "status_mapping": [
            row.model_dump(mode="json") for row in delivery.sanitize_status_mapping(company.status_mapping)
        ],
    }
    await postgres.update_company(company_id, data)
    return {"message": "Field mappings updated successfully"}

@app.post("/delivery/companies/{company_id}/calculate-fee")
async def calculate_fee(company_id: uuid.UUID, body: FeeRequest, postgres: PostgresAgent = Depends(get_postgres_agent)):
    await delivery.get_company_or_404(postgres, company_id)
    return {"fee": delivery.calculate_delivery_fee(body.total_amount)}

@app.post("/delivery/companies/{company_id}/test-connection")
async def test_connection(
    company_id: uuid.UUID,
    postgres: PostgresAgent = Depends(get_postgres_agent),
    courier: CourierAgent = Depends(get_courier_agent),
):
    company = await postgres.get_company(company_id)
    if company is None:
        return JSONResponse(status_code=404, content={"success": False, "message": "Delivery company not found"})
    try:
        result = await courier.test_connection(company)
    except DeliveryError as e:
        return JSONResponse(status_code=400, content={"success": False, "message": e.message})
    return {"success": True, "message": f"Connection to {company.name} successful", "status": result["status"]}

@app.get("/delivery/companies/{company_id}/validate-config")
async def validate_config(
    company_id: uuid.UUID,
    postgres: PostgresAgent = Depends(get_postgres_agent),
    courier: CourierAgent = Depends(get_courier_agent),
):
    company = await delivery.get_company_or_404(postgres, company_id)
    return delivery.company_config_report(company, courier)

@app.post("/delivery/send")
async def send_order(
    body: SendOrderRequest,
    postgres: PostgresAgent = Depends(get_postgres_agent),
    courier: CourierAgent = Depends(get_courier_agent),
):
    return await delivery.send_order(
        postgres,
        courier,
        body.order_id,
        company_id=body.company_id,
        company_code=body.company_code,
        delivery_fee=body.delivery_fee,
    )

@app.post("/delivery/order")
async def send_legacy_order(
    body: LegacySendRequest,
    postgres: PostgresAgent = Depends(get_postgres_agent),
    courier: CourierAgent = Depends(get_courier_agent),
):
    return await delivery.send_legacy_order(postgres, courier, body)

@app.post("/delivery/send/batch")
async def send_batch(
    body: BatchSendRequest,
    postgres: PostgresAgent = Depends(get_postgres_agent),
    courier: CourierAgent = Depends(get_courier_agent),
):
    return await delivery.send_batch(postgres, courier, body)

@app.post("/delivery/assign/batch")
async def assign_batch(body: BatchAssignRequest, postgres: PostgresAgent = Depends(get_postgres_agent)):
    return await delivery.assign_batch(postgres, body)

@app.get("/delivery/status/{order_id}")
async def get_delivery_status(
    order_id: uuid.UUID,
    postgres: PostgresAgent = Depends(get_postgres_agent),
    courier: CourierAgent = Depends(get_courier_agent),
):
    return await delivery.delivery_status(postgres, courier, order_id)

@app.post("/delivery/validate-field-mappings")
async def validate_field_mappings(body: ValidateMappingsRequest, postgres: PostgresAgent = Depends(get_postgres_agent)):
    return await delivery.mapping_report(postgres, body.order_id, body.company_id)

@app.post("/delivery/validate-field-mappings/bulk")
async def validate_all_field_mappings(body: BulkValidateMappingsRequest, postgres: PostgresAgent = Depends(get_postgres_agent)):
    return await delivery.bulk_mapping_report(postgres, body)

@app.get("/delivery/orders")
async def list_delivery_orders(
    order_id: uuid.UUID | None = Query(default=None, alias="orderId"),
    limit: int = delivery.DEFAULT_LISTING_LIMIT,
    postgres: PostgresAgent = Depends(get_postgres_agent),
):
    return await delivery.list_delivery_orders(postgres, order_id=order_id, limit=limit)

@app.post("/orders", status_code=status.HTTP_201_CREATED)
async def create_order(
    body: Order,
    postgres: PostgresAgent = Depends(get_postgres_agent),
    courier: CourierAgent = Depends(get_courier_agent),
):
    return await delivery.create_order(postgres, courier, body)
