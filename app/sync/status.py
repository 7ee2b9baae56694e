import re

from app.logs import debug_log
from app.schemas.delivery_company import DeliveryCompany
from app.schemas.order import DeliveryStatus

INTERNAL_STATUSES = {s.value for s in DeliveryStatus}

# Provider wording -> internal status, used when the company has no matching row
COMMON_STATUS_MAP = {
    # assigned
    "created": DeliveryStatus.ASSIGNED,
    "accepted": DeliveryStatus.ASSIGNED,
    "pending": DeliveryStatus.ASSIGNED,
    "awaiting": DeliveryStatus.ASSIGNED,
    "waiting": DeliveryStatus.ASSIGNED,
    "new": DeliveryStatus.ASSIGNED,
    # picked up
    "pickup": DeliveryStatus.PICKED_UP,
    "picked": DeliveryStatus.PICKED_UP,
    "collected": DeliveryStatus.PICKED_UP,
    # in transit
    "transit": DeliveryStatus.IN_TRANSIT,
    "in_transit": DeliveryStatus.IN_TRANSIT,
    "moving": DeliveryStatus.IN_TRANSIT,
    "dispatched": DeliveryStatus.IN_TRANSIT,
    "shipped": DeliveryStatus.IN_TRANSIT,
    "on_the_way": DeliveryStatus.IN_TRANSIT,
    # out for delivery
    "out_for_delivery": DeliveryStatus.OUT_FOR_DELIVERY,
    "ofd": DeliveryStatus.OUT_FOR_DELIVERY,
    "with_courier": DeliveryStatus.OUT_FOR_DELIVERY,
    # delivered
    "delivered": DeliveryStatus.DELIVERED,
    "completed": DeliveryStatus.DELIVERED,
    # failed
    "failed": DeliveryStatus.DELIVERY_FAILED,
    "delivery_failed": DeliveryStatus.DELIVERY_FAILED,
    "undeliverable": DeliveryStatus.DELIVERY_FAILED,
    "attempt_failed": DeliveryStatus.DELIVERY_FAILED,
    # returned
    "returned": DeliveryStatus.RETURNED,
    "rto": DeliveryStatus.RETURNED,
    "return_to_origin": DeliveryStatus.RETURNED,
    # cancelled
    "cancelled": DeliveryStatus.CANCELLED,
    "canceled": DeliveryStatus.CANCELLED,
}


def normalize_provider_status(raw: str) -> str:
    return re.sub(r"\s+", "_", raw.strip().lower()).replace("-", "_")


def map_status(company: DeliveryCompany, provider_status: str | None) -> DeliveryStatus:
    """
    Translate a provider status into the internal enum.

    Company rows match case-insensitively and win over the common
    dictionary; anything unrecognised falls back to ``assigned``.
    """
    if not provider_status:
        return DeliveryStatus.ASSIGNED

    raw = str(provider_status)
    found = next(
        (row for row in company.status_mapping if row.company_status.lower() == raw.lower()),
        None,
    )
    if found is not None:
        mapped = found.internal_status
    else:
        mapped = COMMON_STATUS_MAP.get(normalize_provider_status(raw), raw)
        mapped = getattr(mapped, "value", mapped)

    debug_log("Mapped provider status", company=company.label, providerStatus=raw, mapped=mapped)
    if mapped in INTERNAL_STATUSES:
        return DeliveryStatus(mapped)
    return DeliveryStatus.ASSIGNED
