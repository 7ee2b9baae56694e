import uuid
from datetime import datetime
from typing import Any

from app.agents.courier import CourierAgent
from app.agents.postgres import PostgresAgent
from app.errors import ConfigurationError, DeliveryError, InvalidRequestError, MappingMissingError, NotFoundError
from app.logs import debug_log, logger
from app.schemas.delivery_company import DeliveryCompany, StatusMappingRule
from app.schemas.dispatch import BatchAssignRequest, BatchSendRequest, BulkValidateMappingsRequest, LegacySendRequest
from app.schemas.order import Order
from app.sync.dispatch import send_to_company
from app.sync.mapping import validate_required_mappings
from app.sync.status import map_status
from app.sync.validation import validate_company_configuration

FREE_DELIVERY_THRESHOLD = 100
FLAT_DELIVERY_FEE = 5
DEFAULT_LISTING_LIMIT = 50


async def resolve_company(
    postgres: PostgresAgent,
    company_id: uuid.UUID | None = None,
    company_code: str | None = None,
) -> DeliveryCompany:
    """By id, else by code, else the active default, else the first active company"""
    company = None
    if company_id:
        company = await postgres.get_company(company_id)
    elif company_code:
        company = await postgres.get_company_by_code(company_code)
    if company is None:
        company = await postgres.get_fallback_company()
    if company is None:
        raise NotFoundError("Delivery company not found")
    return company


async def get_company_or_404(postgres: PostgresAgent, company_id: uuid.UUID) -> DeliveryCompany:
    company = await postgres.get_company(company_id)
    if company is None:
        raise NotFoundError("Delivery company not found")
    return company


async def get_order_or_404(postgres: PostgresAgent, order_id: uuid.UUID) -> Order:
    order = await postgres.get_order(order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def preflight(order: Order, company: DeliveryCompany, courier: CourierAgent):
    """Raise before any network traffic when config or required mappings are incomplete"""
    check = validate_company_configuration(company, courier.hub)
    if not check.ok:
        raise ConfigurationError(
            "Delivery company configuration is incomplete",
            issues=check.issues,
            mode=check.mode,
            url=check.url,
        )
    mapping = validate_required_mappings(order, company)
    if not mapping.ok:
        raise MappingMissingError(
            [m.model_dump(by_alias=True) for m in mapping.missing],
            payload=mapping.payload,
        )


async def dispatch_order(
    postgres: PostgresAgent,
    courier: CourierAgent,
    order: Order,
    company: DeliveryCompany,
    delivery_fee: float,
) -> dict[str, Any]:
    """Send one order and record the outcome on it; nothing is written if the send fails"""
    preflight(order, company, courier)

    async with postgres.transaction() as db:
        result = await send_to_company(order, company, courier, delivery_fee=delivery_fee)
        status = map_status(company, result.provider_status or "assigned")
        fields = {
            "delivery_company": company.id,
            "delivery_status": status.value,
            "delivery_tracking_number": result.tracking_number,
            "tracking_number": result.tracking_number,
            "delivery_assigned_at": datetime.now(),
            "delivery_fee": delivery_fee or 0,
            "delivery_response": result.provider_response,
        }
        await postgres.save_delivery(db, order.id, fields)

    logger.info("Order %s sent to %s (tracking %s)", order.reference, company.label, result.tracking_number)
    return {
        "trackingNumber": result.tracking_number,
        "status": status.value,
        "providerStatus": result.provider_status,
        "providerResponse": result.provider_response,
    }


async def send_order(
    postgres: PostgresAgent,
    courier: CourierAgent,
    order_id: uuid.UUID,
    company_id: uuid.UUID | None = None,
    company_code: str | None = None,
    delivery_fee: float = 0,
) -> dict[str, Any]:
    company = await resolve_company(postgres, company_id, company_code)
    order = await get_order_or_404(postgres, order_id)
    sent = await dispatch_order(postgres, courier, order, company, delivery_fee)
    return {
        "message": "Order sent to delivery company",
        "data": {
            "trackingNumber": sent["trackingNumber"],
            "status": sent["status"],
            "externalStatus": sent["status"],
            "isResend": False,
            "resendAttempts": 0,
            "deliveryCompanyResponse": sent["providerResponse"],
        },
    }


async def send_legacy_order(postgres: PostgresAgent, courier: CourierAgent, request: LegacySendRequest) -> dict[str, Any]:
    raw_id = request.order.get("_id") or request.order.get("id")
    if not raw_id:
        raise InvalidRequestError("order object with _id and companyId are required")
    try:
        order_id = uuid.UUID(str(raw_id))
    except ValueError:
        raise NotFoundError("Order not found") from None
    delivery_fee = (request.mapped_data or {}).get("deliveryFee") or 0
    return await send_order(postgres, courier, order_id, company_id=request.company_id, delivery_fee=delivery_fee)


async def send_batch(postgres: PostgresAgent, courier: CourierAgent, request: BatchSendRequest) -> dict[str, Any]:
    if not request.order_ids:
        raise InvalidRequestError("orderIds array is required")
    company = await resolve_company(postgres, request.company_id, request.company_code)

    results = []
    for order_id in request.order_ids:
        try:
            order = await get_order_or_404(postgres, order_id)
            sent = await dispatch_order(postgres, courier, order, company, request.delivery_fee)
            results.append({
                "orderId": str(order_id),
                "success": True,
                "trackingNumber": sent["trackingNumber"],
                "status": sent["status"],
            })
        except DeliveryError as e:
            logger.warning("Batch send failed for order %s: %s", order_id, e.message)
            entry = {"orderId": str(order_id), "success": False, "error": e.message or "Failed", "code": e.code}
            if isinstance(e, MappingMissingError):
                entry["missing"] = e.missing
            results.append(entry)
            if request.stop_on_error:
                break
        except Exception as e:
            logger.exception("Batch send crashed for order %s", order_id)
            results.append({"orderId": str(order_id), "success": False, "error": str(e) or "Failed", "code": None})
            if request.stop_on_error:
                break

    succeeded = sum(1 for r in results if r["success"])
    return {
        "success": all(r["success"] for r in results),
        "company": {"id": str(company.id), "name": company.name},
        "summary": {
            "total": len(request.order_ids),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
        },
        "results": results,
    }


async def assign_batch(postgres: PostgresAgent, request: BatchAssignRequest) -> dict[str, Any]:
    if not request.order_ids:
        raise InvalidRequestError("orderIds array is required")
    company = await get_company_or_404(postgres, request.company_id)

    fields: dict[str, Any] = {
        "delivery_company": company.id,
        "delivery_assigned_at": datetime.now(),
    }
    if request.tracking_number:
        fields["delivery_tracking_number"] = request.tracking_number
        fields["tracking_number"] = request.tracking_number
    if request.delivery_status:
        fields["delivery_status"] = request.delivery_status.value
    if request.order_status:
        fields["status"] = request.order_status.value

    modified = await postgres.assign_orders(request.order_ids, fields)
    return {
        "success": True,
        "message": "Orders assigned to delivery company",
        "modifiedCount": modified,
        "company": {"id": str(company.id), "name": company.name},
    }


async def auto_dispatch(postgres: PostgresAgent, courier: CourierAgent, order: Order) -> dict[str, Any]:
    """
    Try to hand a freshly created order to the auto-dispatch company.

    Never raises; the outcome (or the reason nothing was sent) is returned
    so order creation succeeds regardless.
    """
    try:
        company = await postgres.get_auto_dispatch_company()
        if company is None:
            return {"success": False, "reason": "NO_AUTO_COMPANY"}

        statuses = company.auto_dispatch_statuses or ["pending"]
        if order.status.value not in statuses:
            return {"success": False, "reason": "STATUS_NOT_ELIGIBLE", "orderStatus": order.status.value}

        check = validate_company_configuration(company, courier.hub)
        if not check.ok:
            return {"success": False, "reason": "INVALID_CONFIGURATION", "issues": check.issues}

        mapping = validate_required_mappings(order, company)
        if not mapping.ok:
            return {
                "success": False,
                "reason": "MISSING_MAPPINGS",
                "missing": [m.model_dump(by_alias=True) for m in mapping.missing],
            }

        delivery_fee = order.shipping_fee or order.delivery_fee or 0
        sent = await dispatch_order(postgres, courier, order, company, delivery_fee)
        return {
            "success": True,
            "companyId": str(company.id),
            "trackingNumber": sent["trackingNumber"],
            "status": sent["status"],
            "providerStatus": sent["providerStatus"] or "assigned",
        }
    except Exception as e:
        logger.warning("Auto-dispatch failed for order %s: %s", order.reference, e)
        return {"success": False, "reason": "AUTO_DISPATCH_ERROR", "error": str(e)}


async def create_order(postgres: PostgresAgent, courier: CourierAgent, order: Order) -> dict[str, Any]:
    if not order.order_number:
        raise InvalidRequestError("orderNumber is required")
    saved = await postgres.insert_order(order)
    result = await auto_dispatch(postgres, courier, saved)
    debug_log("Auto-dispatch outcome", orderRef=saved.reference, result=result)
    if result["success"]:
        saved = await get_order_or_404(postgres, saved.id)
    return {
        "message": "Order created successfully",
        "order": saved.model_dump(by_alias=True, mode="json"),
        "autoDispatch": result,
    }


def company_config_report(company: DeliveryCompany, courier: CourierAgent) -> dict[str, Any]:
    """Validator outcome plus where the effective `db` param comes from"""
    check = validate_company_configuration(company, courier.hub)
    api = company.api_configuration
    sources = {
        "apiParamsDb": api.params.get("db"),
        "queryDb": api.query_params.get("db"),
        "credentialsDb": company.credentials.database or company.credentials.db,
        "customFieldsDb": company.custom_fields.get("db"),
        "envDb": courier.hub.env_db,
    }
    effective_db = next(
        (
            sources[key]
            for key in ("apiParamsDb", "envDb", "credentialsDb", "customFieldsDb", "queryDb")
            if sources[key] is not None
        ),
        None,
    )
    return {
        "success": check.ok,
        "issues": check.issues,
        "mode": check.mode,
        "url": check.url,
        "db": {"effectiveDb": effective_db, "sources": sources},
        "details": {
            "authMethod": api.auth_method.value,
            "format": (company.api_format or api.format).value,
            "requiredParams": api.required_params,
        },
    }


async def mapping_report(postgres: PostgresAgent, order_id: uuid.UUID, company_id: uuid.UUID) -> dict[str, Any]:
    order = await get_order_or_404(postgres, order_id)
    company = await get_company_or_404(postgres, company_id)
    check = validate_required_mappings(order, company)
    return {
        "success": True,
        "data": {
            "isValid": check.ok,
            "errors": [] if check.ok else ["Missing required fields"],
            "missingFields": [m.model_dump(by_alias=True) for m in check.missing],
            "invalidFields": [],
            "payloadPreview": check.payload,
        },
    }


async def bulk_mapping_report(postgres: PostgresAgent, request: BulkValidateMappingsRequest) -> dict[str, Any]:
    order = await get_order_or_404(postgres, request.order_id)
    if request.company_ids:
        companies = await postgres.list_companies(ids=request.company_ids)
    else:
        companies = await postgres.list_companies(active_only=request.active_only)

    results = []
    for company in companies:
        check = validate_required_mappings(order, company)
        results.append({
            "companyId": str(company.id),
            "companyName": company.name,
            "companyCode": company.code or "",
            "isActive": company.is_active,
            "isValid": check.ok,
            "missingFields": [m.model_dump(by_alias=True) for m in check.missing],
            "payloadPreview": check.payload,
        })
    return {"success": True, "data": {"allValid": all(r["isValid"] for r in results), "results": results}}


async def delivery_status(postgres: PostgresAgent, courier: CourierAgent, order_id: uuid.UUID) -> dict[str, Any]:
    order = await get_order_or_404(postgres, order_id)
    if order.delivery_company is None:
        raise InvalidRequestError("Order not assigned to delivery")
    company = await get_company_or_404(postgres, order.delivery_company)

    report = await courier.fetch_status(order, company)
    internal = map_status(company, report.status).value
    return {
        "success": True,
        **report.model_dump(by_alias=True),
        "status": internal,
        "internalStatus": internal,
    }


async def list_delivery_orders(
    postgres: PostgresAgent,
    order_id: uuid.UUID | None = None,
    limit: int = DEFAULT_LISTING_LIMIT,
) -> dict[str, Any]:
    orders = await postgres.list_delivery_orders(order_id=order_id, limit=limit)
    company_ids = list({o.delivery_company for o in orders if o.delivery_company})
    companies = {c.id: c for c in await postgres.list_companies(ids=company_ids)} if company_ids else {}

    mapped = []
    for order in orders:
        company = companies.get(order.delivery_company)
        since = order.delivery_assigned_at or order.created_at
        mapped.append({
            "_id": str(order.id),
            "orderNumber": order.order_number,
            "status": order.delivery_status.value if order.delivery_status else "assigned",
            "trackingNumber": order.delivery_tracking_number or order.tracking_number,
            "deliveryCompany": {"_id": str(company.id), "name": company.name, "code": company.code or ""} if company else None,
            "createdAt": since.isoformat() if since else None,
            "customerInfo": order.customer_info.model_dump(by_alias=True),
        })
    return {"data": mapped, "docs": mapped}


def calculate_delivery_fee(total_amount: float) -> float:
    return 0 if total_amount >= FREE_DELIVERY_THRESHOLD else FLAT_DELIVERY_FEE


def sanitize_status_mapping(rows: list[StatusMappingRule]) -> list[StatusMappingRule]:
    """Drop rows with a blank side; they would never match anything"""
    return [r for r in rows if r.company_status.strip() and r.internal_status.strip()]
