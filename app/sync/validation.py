from dataclasses import dataclass

from app.config import HubSettings
from app.logs import debug_log
from app.schemas.delivery_company import ApiFormat, AuthMethod, DeliveryCompany
from app.schemas.dispatch import ConfigCheck


@dataclass
class Endpoint:
    url: str
    format: str
    auth_method: str
    is_test: bool

    @property
    def mode(self) -> str:
        return "test" if self.is_test else "live"


def resolve_endpoint(company: DeliveryCompany, hub: HubSettings) -> Endpoint:
    """Effective URL, protocol and auth method; the hub wins over the company"""
    api = company.api_configuration
    hub_url = hub.base_url if hub.enabled else None
    url = hub_url or company.url
    if hub.enabled:
        format = hub.format
        auth_method = hub.auth_method
    else:
        format = (company.api_format or api.format or ApiFormat.REST).value
        auth_method = api.auth_method.value
    return Endpoint(url=url, format=format, auth_method=auth_method, is_test=api.is_test_mode or not url)


def apply_hub(company: DeliveryCompany, hub: HubSettings) -> DeliveryCompany:
    """Project the hub override into a copy of the company configuration"""
    if not hub.enabled:
        return company

    api = company.api_configuration
    identity = {
        "companyCode": company.code,
        "companyId": str(company.id or ""),
        "companyName": company.name,
    }
    params = {**api.params, **hub.params}
    if hub.db:
        params["db"] = hub.db
    params.update({k: v for k, v in identity.items() if v is not None})

    overrides = {
        "base_url": hub.base_url,
        "format": hub.format,
        "method": hub.method,
        "auth_method": hub.auth_method,
        "headers": {**api.headers, **hub.headers},
        "params": params,
        "query_params": {**api.query_params, **hub.query_params},
        "jsonrpc_omit_method": hub.jsonrpc_omit_method,
        "api_key_header": hub.api_key_header,
    }
    for field, value in (
        ("timeout_ms", hub.timeout_ms),
        ("api_key", hub.api_key),
        ("username", hub.username),
        ("password", hub.password),
        ("status_url", hub.status_url),
    ):
        if value is not None:
            overrides[field] = value

    merged = api.model_dump()
    merged.update(overrides)
    return company.model_copy(update={
        "api_url": None,
        "api_format": None,
        "api_configuration": type(api).model_validate(merged),
    })


def validate_company_configuration(company: DeliveryCompany, hub: HubSettings) -> ConfigCheck:
    api = company.api_configuration
    credentials = company.credentials
    endpoint = resolve_endpoint(company, hub)
    issues: list[str] = []

    if not company.is_active:
        issues.append("company_inactive")

    if not endpoint.is_test and not endpoint.url:
        issues.append("missing_url")

    if endpoint.format == ApiFormat.JSONRPC.value:
        method = hub.method if hub.enabled else api.method
        omit = (hub.enabled and hub.jsonrpc_omit_method) or api.jsonrpc_omit_method
        if not method and not omit:
            issues.append("missing_jsonrpc_method")

    if endpoint.auth_method == AuthMethod.BASIC.value:
        if not company.username or not company.password:
            issues.append("missing_basic_auth_credentials")
    elif endpoint.auth_method == AuthMethod.BEARER.value:
        token = api.bearer or api.api_key or credentials.token or credentials.api_key
        if hub.enabled:
            token = token or hub.api_key
        if not token:
            issues.append("missing_bearer_token")
    elif endpoint.auth_method == AuthMethod.API_KEY.value:
        key = api.api_key or credentials.api_key
        if hub.enabled:
            key = key or hub.api_key
        if not key:
            issues.append("missing_api_key")

    status_url = (hub.status_url if hub.enabled else None) or api.status_url
    if status_url and ":tracking" not in status_url:
        issues.append("status_url_missing_tracking_placeholder")

    for key in api.required_params:
        if key in api.params or key in api.query_params:
            continue
        if key == "db" and (hub.env_db or company.credential_db):
            continue
        issues.append(f"missing_required_param:{key}")

    check = ConfigCheck(ok=not issues, issues=issues, mode=endpoint.mode, url=endpoint.url)
    if check.ok:
        debug_log("Company configuration validation passed", company=company.label, mode=check.mode)
    else:
        debug_log("Company configuration validation failed", company=company.label, issues=issues)
    return check
