"""
Delivery integration errors.

Every error carries an optional ``code`` understood by API callers
(``MAPPING_MISSING``, ``PARAMS_MISSING``, ``CONFIG_INVALID``) and
``details`` with the actionable part of the failure.
"""
from typing import Any


class DeliveryError(Exception):
    """Base exception for delivery integration"""

    code: str | None = None
    http_status: int = 500

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def extra(self) -> dict[str, Any]:
        """Additional top-level fields for the API error body"""
        return {}

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"message": self.message}
        if self.code:
            body["code"] = self.code
        if self.details is not None:
            body["details"] = self.details
        body.update(self.extra())
        return body


class NotFoundError(DeliveryError):
    """Raised when an order or delivery company does not exist"""
    http_status = 404


class InvalidRequestError(DeliveryError):
    """Raised when a request body lacks what the flow needs"""
    http_status = 400


class ConfigurationError(DeliveryError):
    """Raised when a delivery company configuration is incomplete"""

    code = "CONFIG_INVALID"
    http_status = 400

    def __init__(self, message: str, issues: list[str] | None = None, mode: str | None = None, url: str | None = None):
        super().__init__(message, details=issues or [])
        self.issues = issues or []
        self.mode = mode
        self.url = url

    def extra(self) -> dict[str, Any]:
        if self.mode is None:
            return {}
        return {"issues": self.issues, "mode": self.mode, "url": self.url}


class MappingMissingError(DeliveryError):
    """Raised when required field mappings resolve to empty values"""

    code = "MAPPING_MISSING"
    http_status = 400

    def __init__(self, missing: list[dict[str, Any]], payload: dict[str, Any] | None = None):
        super().__init__("Missing required mapped fields", details=missing)
        self.missing = missing
        self.payload = payload

    def extra(self) -> dict[str, Any]:
        body: dict[str, Any] = {"missingFields": self.missing}
        if self.payload is not None:
            body["payloadPreview"] = self.payload
        return body


class ParamsMissingError(DeliveryError):
    """Raised when required low-level API params cannot be satisfied"""

    code = "PARAMS_MISSING"
    http_status = 400

    def __init__(self, missing_params: list[str], url: str | None, format: str):
        super().__init__(
            f"Missing required API params: {', '.join(missing_params)}",
            details={"missingParams": missing_params, "url": url, "format": format},
        )
        self.missing_params = missing_params


class ProviderRejectedError(DeliveryError):
    """Raised when the provider answers with an explicit error envelope"""

    def __init__(self, message: str, provider_code: Any = None, status_code: int | None = None, response_data: Any = None):
        super().__init__(message)
        self.provider_code = provider_code
        self.status_code = status_code
        self.response_data = response_data


class TransportError(DeliveryError):
    """Raised for network failures, timeouts and non-2xx provider responses"""

    def __init__(self, message: str, status_code: int | None = None, response_data: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data
