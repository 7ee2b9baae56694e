import math, re
from typing import Any

from app.logs import debug_log
from app.schemas.delivery_company import DeliveryCompany, FieldMappingRule, Transform
from app.schemas.dispatch import MappingCheck, MissingField
from app.schemas.order import Order

NON_DIGITS = re.compile(r"\D+")

# Legacy flat `fieldMapping` keys and the order paths they read
STANDARD_FIELDS = {
    "orderId": "orderNumber",
    "customerName": "customerInfo.firstName",
    "customerPhone": "customerInfo.mobile",
    "customerEmail": "customerInfo.email",
    "deliveryAddress": "shippingAddress.street",
    "city": "shippingAddress.city",
    "country": "shippingAddress.country",
    "amount": "totalAmount",
    "totalWithShipping": "totalWithShipping",
    "productName": "items.0.name",
    "itemCount": "items.length",
    "currency": "currency",
    "notes": "deliveryNotes",
}


def get_by_path(document: Any, path: str) -> Any:
    """
    Resolve ``segment(.segment)*`` against nested dicts and lists.
    List segments are decimal indexes, or ``length`` for the list size.
    """
    value = document
    for segment in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(segment)
        elif isinstance(value, list):
            if segment == "length":
                value = len(value)
            elif segment.isdigit():
                index = int(segment)
                value = value[index] if index < len(value) else None
            else:
                return None
        else:
            return None
    return value


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _to_number(value: Any) -> Any:
    # blank strings stay blank rather than becoming 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return value
    if not math.isfinite(number):
        return value
    return int(number) if number.is_integer() else number


def apply_transform(transform: str | None, value: Any, document: dict, rule: FieldMappingRule) -> Any:
    try:
        kind = Transform(transform) if transform else None
    except ValueError:
        return value

    if kind is Transform.FULL_NAME:
        first = get_by_path(document, "customerInfo.firstName") or ""
        last = get_by_path(document, "customerInfo.lastName") or ""
        return f"{first} {last}".strip()
    if kind is Transform.UPPERCASE and isinstance(value, str):
        return value.upper()
    if kind is Transform.LOWERCASE and isinstance(value, str):
        return value.lower()
    if kind is Transform.TRIM and isinstance(value, str):
        return value.strip()
    if kind is Transform.PHONE_DIGITS and isinstance(value, str):
        return NON_DIGITS.sub("", value)
    if kind is Transform.PHONE_LAST10:
        digits = NON_DIGITS.sub("", "" if value is None else _to_string(value))
        return digits[-10:]
    if kind is Transform.TO_STRING and value is not None:
        return _to_string(value)
    if kind is Transform.TO_NUMBER and value is not None:
        return _to_number(value)
    if kind is Transform.ARRAY_LENGTH:
        items = get_by_path(document, rule.source_field) if rule.source_field else None
        return len(items) if isinstance(items, list) else 0
    if kind is Transform.PRODUCT_NAMES:
        items = get_by_path(document, "items") or []
        names = [item.get("name") for item in items if isinstance(item, dict) and item.get("name")]
        return ", ".join(names)
    return value


def build_payload(order: Order, company: DeliveryCompany) -> dict[str, Any]:
    """Map an order onto the flat payload a delivery company expects"""
    document = order.as_document()
    payload: dict[str, Any] = {}

    for rule in company.field_mappings:
        if not rule.enabled or not rule.target_field:
            continue

        value = None
        if rule.default_value_priority and rule.has_default:
            value = rule.default_value
        elif rule.source_field == "static":
            value = rule.default_value
        elif rule.source_field:
            value = get_by_path(document, rule.source_field)

        if (value is None or value == "") and rule.has_default:
            value = rule.default_value

        value = apply_transform(rule.transform, value, document, rule)
        if value is not None:
            payload[rule.target_field] = value

    if not payload and company.field_mapping:
        for key, source in STANDARD_FIELDS.items():
            target = company.field_mapping.get(key)
            if not target:
                continue
            value = get_by_path(document, source)
            if value is not None:
                payload[target] = value

    return payload


def validate_required_mappings(order: Order, company: DeliveryCompany) -> MappingCheck:
    payload = build_payload(order, company)
    missing = []
    for rule in company.field_mappings:
        if not rule.enabled or not rule.required:
            continue
        if is_blank(rule.source_field) or is_blank(rule.target_field):
            continue
        if is_blank(payload.get(rule.target_field)):
            missing.append(MissingField(source_field=rule.source_field, target_field=rule.target_field))

    check = MappingCheck(ok=not missing, missing=missing, payload=payload)
    if not check.ok:
        debug_log(
            "Required field mappings missing; aborting send",
            company=company.label,
            missing=[m.model_dump(by_alias=True) for m in missing],
        )
    return check
