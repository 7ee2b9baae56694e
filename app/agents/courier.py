import re, time
from contextlib import asynccontextmanager
from typing import Any
import httpx

from app.config import HubSettings
from app.errors import ConfigurationError, ProviderRejectedError, TransportError
from app.logs import debug_log, mask_secrets, safe_json
from app.schemas.delivery_company import AuthMethod, DeliveryCompany, ProviderFamily
from app.schemas.dispatch import DispatchResult, StatusReport
from app.schemas.order import Order

TRACKING_KEYS = ("trackingNumber", "tracking_id", "trackingId", "reference", "reference_id", "order_id", "id")
STATUS_KEYS = ("deliveryStatus", "status", "current_status", "state")
DEFAULT_TIMEOUT_MS = 15000
STATUS_TIMEOUT = 15.0
PROBE_TIMEOUT = 8.0
MISSING_DB_HINT = (
    " - missing 'db' param. Configure company.apiConfiguration.params.db or set "
    "DELIVERY_HUB_DB / ODOO_DB / DELIVERY_DB or DELIVERY_DEFAULT_PARAMS={\"db\":\"...\"}"
)


def _first(data: Any, keys: tuple[str, ...], default: Any = None) -> Any:
    if not isinstance(data, dict):
        return default
    for key in keys:
        if data.get(key):
            return data[key]
    return default


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"raw_response": response.text}


class CourierAgent:
    """
    Outbound HTTP calls to delivery companies.

    Speaks plain REST (JSON POST) and JSON-RPC 2.0. Pass ``client`` to share a
    connection pool or to fake the network; otherwise each call opens its own.
    """

    def __init__(self, hub: HubSettings, client: httpx.AsyncClient | None = None):
        self.hub = hub
        self.client = client

    @asynccontextmanager
    async def session(self):
        if self.client is not None:
            yield self.client
        else:
            async with httpx.AsyncClient() as client:
                yield client

    def build_auth(self, company: DeliveryCompany) -> tuple[dict[str, str], httpx.BasicAuth | None]:
        api = company.api_configuration
        credentials = company.credentials
        headers = dict(api.headers)
        auth = None

        if api.auth_method == AuthMethod.BASIC:
            username = api.username or credentials.username
            password = api.password or credentials.password
            if username or password:
                auth = httpx.BasicAuth(username or "", password or "")
        elif api.auth_method == AuthMethod.BEARER:
            token = api.bearer or api.api_key or credentials.token or credentials.api_key
            if token:
                headers["Authorization"] = f"Bearer {token}"
        elif api.auth_method == AuthMethod.API_KEY:
            key = api.api_key or credentials.api_key
            header_name = credentials.api_key_header or api.api_key_header or self.hub.api_key_header or "x-api-key"
            if key:
                headers[header_name] = key

        return headers, auth

    def request_params(self, company: DeliveryCompany) -> dict[str, Any]:
        """Global defaults, then company params, then a `db` from env or credentials"""
        params = {**self.hub.default_params, **company.api_configuration.params}
        if params.get("db") is None and self.hub.env_db:
            params["db"] = self.hub.env_db
        if params.get("db") is None and company.credential_db:
            params["db"] = company.credential_db
        return params

    def request_query(self, company: DeliveryCompany, params: dict[str, Any]) -> dict[str, Any]:
        query = {**self.hub.default_query, **company.api_configuration.query_params}
        # Odoo-style backends read `db` from the URL only
        if self.requires_db(company) and query.get("db") is None and params.get("db") is not None:
            query["db"] = params["db"]
        if self.hub.env_db and query.get("db") is None and params.get("db") is None:
            query["db"] = self.hub.env_db
        return query

    def requires_db(self, company: DeliveryCompany) -> bool:
        return self.hub.require_db or company.provider_family() is ProviderFamily.ODOO

    def includes_credentials(self, company: DeliveryCompany) -> bool:
        return (
            self.hub.include_credentials
            or company.provider_family() is ProviderFamily.ODOO
            or company.api_configuration.credentials_in_params
        )

    def _endpoint(self, company: DeliveryCompany, query: dict[str, Any]) -> str:
        url = company.url
        if not url:
            raise ConfigurationError("Delivery company is missing API URL", issues=["missing_url"])
        clean = {k: _query_value(v) for k, v in query.items() if v is not None}
        return str(httpx.URL(url).copy_merge_params(clean))

    def _timeout(self, company: DeliveryCompany) -> float:
        return (company.api_configuration.timeout_ms or DEFAULT_TIMEOUT_MS) / 1000

    async def _post(self, company: DeliveryCompany, url: str, body: dict[str, Any], protocol: str) -> httpx.Response:
        headers, auth = self.build_auth(company)
        headers = {"Content-Type": "application/json", **headers}
        debug_log(
            f"Sending {protocol} delivery request",
            company=company.label,
            url=url,
            headers=mask_secrets(headers),
            body=mask_secrets(body),
        )

        try:
            async with self.session() as client:
                response = await client.post(url, json=body, headers=headers, auth=auth, timeout=self._timeout(company))
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._transport_error(e, protocol, e.response) from e
        except httpx.HTTPError as e:
            raise self._transport_error(e, protocol, None) from e
        return response

    def _transport_error(self, error: httpx.HTTPError, protocol: str, response: httpx.Response | None) -> TransportError:
        data = _response_body(response) if response is not None else None
        data_text = data if isinstance(data, str) else safe_json(data or {})
        message = str(error) or type(error).__name__
        if "KeyError: 'db'" in data_text or re.search(r"\bdb\b", message):
            message += MISSING_DB_HINT
        debug_log(
            f"{protocol} delivery request failed",
            error=type(error).__name__,
            errorMessage=message,
            responseStatus=response.status_code if response is not None else None,
            responseData=safe_json(data),
        )
        return TransportError(
            message,
            status_code=response.status_code if response is not None else None,
            response_data=data,
        )

    def _reject(self, data: dict[str, Any], response: httpx.Response) -> ProviderRejectedError:
        error = data.get("error")
        debug_log("Provider returned error payload", error=safe_json(error))
        message = "Provider rejected the request"
        code = None
        if isinstance(error, dict):
            nested = error.get("data") if isinstance(error.get("data"), dict) else {}
            message = error.get("message") or nested.get("message") or message
            code = error.get("code")
        elif isinstance(error, str):
            message = error
        prefix = f"Provider error ({code})" if code else "Provider error"
        return ProviderRejectedError(
            f"{prefix}: {message}",
            provider_code=code,
            status_code=response.status_code,
            response_data=data,
        )

    async def send_rest(self, order: Order, company: DeliveryCompany, payload: dict[str, Any]) -> DispatchResult:
        params = self.request_params(company)
        body = {**params, **payload}
        url = self._endpoint(company, self.request_query(company, params))

        response = await self._post(company, url, body, "REST")
        data = _response_body(response)
        if isinstance(data, dict) and data.get("error"):
            raise self._reject(data, response)

        tracking = _first(data, TRACKING_KEYS)
        provider_status = _first(data, STATUS_KEYS, "created")
        debug_log(
            "REST delivery response received",
            status=response.status_code,
            tracking=tracking,
            providerStatus=provider_status,
            data=safe_json(data),
        )
        return DispatchResult(
            tracking_number=str(tracking) if tracking is not None else None,
            provider_response=data,
            provider_status=str(provider_status),
        )

    async def send_jsonrpc(self, order: Order, company: DeliveryCompany, payload: dict[str, Any]) -> DispatchResult:
        api = company.api_configuration
        base = self.request_params(company)
        params = {**base, **payload}
        if self.includes_credentials(company):
            # some JSON-RPC providers ignore header auth and read credentials from params
            credentials = {"password": company.password, "username": company.username, "login": company.username}
            params.update({k: v for k, v in credentials.items() if v is not None})

        if api.jsonrpc_omit_method:
            envelope = {"jsonrpc": "2.0", "params": params}
        else:
            envelope = {
                "jsonrpc": "2.0",
                "method": api.method or "create_order",
                "params": params,
                "id": int(time.time() * 1000),
            }
        url = self._endpoint(company, self.request_query(company, base))

        response = await self._post(company, url, envelope, "JSON-RPC")
        data = _response_body(response)
        if isinstance(data, dict) and data.get("error"):
            raise self._reject(data, response)

        result = data.get("result") if isinstance(data, dict) else None
        tracking = _first(result, TRACKING_KEYS)
        provider_status = _first(result, STATUS_KEYS, "created")
        debug_log(
            "JSON-RPC delivery response received",
            status=response.status_code,
            tracking=tracking,
            providerStatus=provider_status,
            data=safe_json(data),
        )
        return DispatchResult(
            tracking_number=str(tracking) if tracking is not None else None,
            provider_response=data,
            provider_status=str(provider_status),
        )

    async def fetch_status(self, order: Order, company: DeliveryCompany) -> StatusReport:
        tracking = order.delivery_tracking_number or order.tracking_number
        status_url = company.api_configuration.status_url
        if not status_url:
            current = order.delivery_status.value if order.delivery_status else "assigned"
            debug_log("No status URL configured; returning order status", orderRef=order.reference, status=current)
            return StatusReport(status=current, tracking_number=tracking)

        headers, auth = self.build_auth(company)
        url = status_url.replace(":tracking", tracking or "")
        debug_log("Fetching delivery status", company=company.label, url=url, headers=mask_secrets(headers))

        try:
            async with self.session() as client:
                response = await client.get(url, headers=headers, auth=auth, timeout=STATUS_TIMEOUT)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._transport_error(e, "Status", e.response) from e
        except httpx.HTTPError as e:
            raise self._transport_error(e, "Status", None) from e

        data = _response_body(response)
        debug_log("Status response received", status=response.status_code, data=safe_json(data))
        if not isinstance(data, dict):
            data = {}
        return StatusReport(
            status=str(_first(data, STATUS_KEYS, "in_transit")),
            tracking_number=tracking,
            estimated_delivery=data.get("estimatedDelivery") or data.get("eta"),
            events=data.get("events") or data.get("updates") or [],
        )

    async def test_connection(self, company: DeliveryCompany) -> dict[str, Any]:
        url = company.url
        if not url:
            raise ConfigurationError("No API URL configured", issues=["missing_url"])

        headers, auth = self.build_auth(company)
        debug_log("Testing company connection", company=company.label, url=url, headers=mask_secrets(headers))

        async with self.session() as client:
            try:
                response = await client.request("OPTIONS", url, headers=headers, auth=auth, timeout=PROBE_TIMEOUT)
                response.raise_for_status()
            except httpx.HTTPError as e:
                debug_log("OPTIONS failed, falling back to HEAD", error=type(e).__name__, errorMessage=str(e))
                try:
                    response = await client.head(url, headers=headers, auth=auth, timeout=PROBE_TIMEOUT)
                    response.raise_for_status()
                except httpx.HTTPStatusError as e:
                    raise self._transport_error(e, "HEAD", e.response) from e
                except httpx.HTTPError as e:
                    raise self._transport_error(e, "HEAD", None) from e

        return {"ok": True, "status": response.status_code}
