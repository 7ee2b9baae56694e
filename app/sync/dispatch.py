import re, time
from typing import Any

from app.agents.courier import CourierAgent
from app.errors import MappingMissingError, ParamsMissingError, ProviderRejectedError, TransportError
from app.logs import debug_log, mask_secrets
from app.schemas.delivery_company import ApiFormat, DeliveryCompany
from app.schemas.dispatch import DispatchResult
from app.schemas.order import Order
from app.sync.mapping import build_payload, is_blank, validate_required_mappings
from app.sync.validation import apply_hub, resolve_endpoint


def looks_like_jsonrpc(error: Exception) -> bool:
    """Whether a failed REST call came from a JSON-RPC backend"""
    data = getattr(error, "response_data", None)
    if isinstance(data, dict) and (data.get("jsonrpc") or data.get("error")):
        return True
    message = str(error)
    if re.search(r"jsonrpc|odoo", message, re.IGNORECASE):
        return True
    debug_text = ""
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        debug_text = str(data["error"].get("debug") or "")
    return "keyerror: 'db'" in debug_text.lower()


def missing_params(
    courier: CourierAgent,
    company: DeliveryCompany,
    body: dict[str, Any],
    query: dict[str, Any],
) -> list[str]:
    required = list(company.api_configuration.required_params)
    if courier.requires_db(company):
        required.append("db")
    if courier.includes_credentials(company):
        required.extend(["password", "username"])

    fallbacks = {
        "db": company.credential_db,
        "password": company.password,
        "username": company.username,
    }
    missing = []
    for key in dict.fromkeys(required):
        if not is_blank(body.get(key)) or not is_blank(query.get(key)):
            continue
        if fallbacks.get(key):
            continue
        missing.append(key)
    return missing


async def send_to_company(
    order: Order,
    company: DeliveryCompany,
    courier: CourierAgent,
    delivery_fee: float | None = None,
) -> DispatchResult:
    """
    Build, validate and send one order to a delivery company.

    Test mode (explicit, or no URL at all) never touches the network. A REST
    call rejected by what looks like a JSON-RPC backend is retried once over
    JSON-RPC; there are no other retries.
    """
    hub = courier.hub
    payload = build_payload(order, company)
    payload.update(company.custom_fields)
    if delivery_fee is not None:
        payload["deliveryFee"] = delivery_fee

    endpoint = resolve_endpoint(company, hub)
    debug_log(
        "Preparing to send order to delivery company",
        orderRef=order.reference,
        company=company.label,
        format=endpoint.format,
        url=endpoint.url or "[none]",
        mode=endpoint.mode,
        payload=mask_secrets(payload),
    )

    if endpoint.is_test:
        tracking = f"TEST-{order.reference}-{str(int(time.time() * 1000))[-6:]}"
        debug_log("Simulated delivery send (test mode)", tracking=tracking)
        return DispatchResult(
            tracking_number=tracking,
            provider_response={
                "mode": "test",
                "note": "Simulated send (no API URL or test mode enabled)",
                "payload": payload,
            },
            provider_status="created",
        )

    check = validate_required_mappings(order, company)
    if not check.ok:
        missing = [m.model_dump(by_alias=True) for m in check.missing]
        debug_log("Preflight failed: field mappings missing", missing=missing)
        raise MappingMissingError(missing)

    effective = apply_hub(company, hub)
    base_params = courier.request_params(effective)
    body = {**base_params, **payload}
    query = courier.request_query(effective, base_params)
    missing = missing_params(courier, effective, body, query)
    if missing:
        debug_log(
            "Preflight failed: API params missing",
            missingParams=missing,
            mergedBodyParams=mask_secrets(body),
            baseQuery=query,
        )
        raise ParamsMissingError(missing, endpoint.url, endpoint.format)

    if endpoint.format == ApiFormat.JSONRPC.value:
        return await courier.send_jsonrpc(order, effective, payload)

    try:
        return await courier.send_rest(order, effective, payload)
    except (ProviderRejectedError, TransportError) as e:
        if not looks_like_jsonrpc(e):
            raise
        debug_log("REST send hinted JSON-RPC provider; retrying as JSON-RPC once")
        return await courier.send_jsonrpc(order, effective, payload)
