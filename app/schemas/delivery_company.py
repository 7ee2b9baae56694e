import re, uuid
from enum import Enum
from typing import Any
from pydantic import ConfigDict, Field

from app.schemas.base import CamelModel

ODOO_URL_PATTERN = re.compile(r"olivery|odoo", re.IGNORECASE)

class ApiFormat(str, Enum):
    REST = "rest"
    JSONRPC = "jsonrpc"
    SOAP = "soap"
    GRAPHQL = "graphql"

class AuthMethod(str, Enum):
    NONE = "none"
    API_KEY = "apiKey"
    BASIC = "basic"
    BEARER = "bearer"

class ProviderFamily(str, Enum):
    GENERIC = "generic"
    ODOO = "odoo"

class Transform(str, Enum):
    FULL_NAME = "full_name"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    TRIM = "trim"
    PHONE_DIGITS = "phone_digits"
    PHONE_LAST10 = "phone_last10"
    TO_STRING = "to_string"
    TO_NUMBER = "to_number"
    ARRAY_LENGTH = "array_length"
    PRODUCT_NAMES = "product_names"

class FieldMappingRule(CamelModel):
    source_field: str = ""
    target_field: str = ""
    required: bool = False
    transform: str | None = None
    enabled: bool = True
    default_value: Any = None
    default_value_priority: bool = False

    @property
    def has_default(self) -> bool:
        return self.default_value is not None

class StatusMappingRule(CamelModel):
    company_status: str = ""
    internal_status: str = ""

class Credentials(CamelModel):
    model_config = ConfigDict(extra="allow")

    username: str | None = None
    login: str | None = None
    password: str | None = None
    token: str | None = None
    api_key: str | None = None
    api_key_header: str | None = None
    database: str | None = None
    db: str | None = None

class ApiConfiguration(CamelModel):
    base_url: str = ""
    format: ApiFormat = ApiFormat.REST
    auth_method: AuthMethod = AuthMethod.NONE
    api_key: str | None = None
    api_key_header: str | None = None
    bearer: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    username: str | None = None
    password: str | None = None
    method: str | None = None
    status_url: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    query_params: dict[str, Any] = Field(default_factory=dict)
    required_params: list[str] = Field(default_factory=list)
    is_test_mode: bool = False
    timeout_ms: int = 15000
    credentials_in_params: bool = False
    jsonrpc_omit_method: bool = False
    provider_family: ProviderFamily | None = None

class DeliveryCompanyBase(CamelModel):
    name: str
    code: str | None = None
    is_active: bool = True
    is_default: bool = False
    auto_dispatch_on_order_create: bool = False
    auto_dispatch_statuses: list[str] = Field(default_factory=lambda: ["pending"])
    api_url: str | None = None
    api_format: ApiFormat | None = None
    credentials: Credentials = Field(default_factory=Credentials)
    field_mapping: dict[str, str] = Field(default_factory=dict)
    api_configuration: ApiConfiguration = Field(default_factory=ApiConfiguration)
    field_mappings: list[FieldMappingRule] = Field(default_factory=list)
    status_mapping: list[StatusMappingRule] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)

class DeliveryCompany(DeliveryCompanyBase):
    id: uuid.UUID | None = None

    @property
    def label(self) -> str:
        return self.name or self.code or str(self.id)

    @property
    def url(self) -> str:
        return self.api_url or self.api_configuration.base_url or ""

    @property
    def credential_db(self) -> str | None:
        return self.credentials.database or self.credentials.db or self.custom_fields.get("db") or None

    @property
    def username(self) -> str | None:
        return self.api_configuration.username or self.credentials.username or self.credentials.login

    @property
    def password(self) -> str | None:
        return self.api_configuration.password or self.credentials.password

    def provider_family(self) -> ProviderFamily:
        """Explicit family wins; URL sniffing only covers configs that never set one"""
        if self.api_configuration.provider_family is not None:
            return self.api_configuration.provider_family
        if ODOO_URL_PATTERN.search(self.url):
            return ProviderFamily.ODOO
        return ProviderFamily.GENERIC

class CompanyUpdate(CamelModel):
    name: str | None = None
    code: str | None = None
    is_active: bool | None = None
    is_default: bool | None = None
    auto_dispatch_on_order_create: bool | None = None
    auto_dispatch_statuses: list[str] | None = None
    api_url: str | None = None
    api_format: ApiFormat | None = None
    credentials: Credentials | None = None
    field_mapping: dict[str, str] | None = None
    api_configuration: ApiConfiguration | None = None
    field_mappings: list[FieldMappingRule] | None = None
    status_mapping: list[StatusMappingRule] | None = None
    custom_fields: dict[str, Any] | None = None
