import uuid
import httpx
import pytest

from app.schemas.order import DeliveryStatus
from conftest import make_company, make_order

pytestmark = pytest.mark.asyncio


def sandbox_company(**extra):
    return make_company(apiConfiguration={"isTestMode": True}, **extra)


async def test_send_order_in_test_mode(api, postgres, provider):
    company = postgres.add_company(sandbox_company())
    order = postgres.add_order(make_order())

    resp = await api.post("/delivery/send", json={"orderId": str(order.id), "companyId": str(company.id), "deliveryFee": 4})

    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Order sent to delivery company"
    assert body["data"]["trackingNumber"].startswith("TEST-ORD-1001-")
    assert body["data"]["status"] == "assigned"
    assert provider.requests == []

    stored = postgres.orders[order.id]
    assert stored.delivery_company == company.id
    assert stored.delivery_status is DeliveryStatus.ASSIGNED
    assert stored.tracking_number == stored.delivery_tracking_number == body["data"]["trackingNumber"]
    assert stored.delivery_fee == 4
    assert stored.delivery_assigned_at is not None


async def test_send_order_live_maps_provider_status(api, postgres, provider):
    provider.responder = lambda request: httpx.Response(200, json={"trackingNumber": "TRK-9", "status": "Done"})
    company = postgres.add_company(make_company(statusMapping=[{"companyStatus": "done", "internalStatus": "delivered"}]))
    order = postgres.add_order(make_order())

    resp = await api.post("/delivery/send", json={"orderId": str(order.id), "companyCode": "FAST"})

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "delivered"
    assert postgres.orders[order.id].delivery_response == {"trackingNumber": "TRK-9", "status": "Done"}


async def test_send_order_falls_back_to_default_company(api, postgres):
    postgres.add_company(sandbox_company(name="Zed Express", code="ZED"))
    default = postgres.add_company(sandbox_company(name="Main Courier", code="MAIN", isDefault=True))
    order = postgres.add_order(make_order())

    resp = await api.post("/delivery/send", json={"orderId": str(order.id)})

    assert resp.status_code == 200
    assert postgres.orders[order.id].delivery_company == default.id


async def test_send_order_with_incomplete_config(api, postgres, provider):
    company = postgres.add_company(make_company(apiConfiguration={
        "baseUrl": "https://api.courier.test/orders",
        "authMethod": "apiKey",
    }))
    order = postgres.add_order(make_order())

    resp = await api.post("/delivery/send", json={"orderId": str(order.id), "companyId": str(company.id)})

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "CONFIG_INVALID"
    assert body["issues"] == ["missing_api_key"]
    assert body["mode"] == "live"
    assert provider.requests == []


async def test_send_order_with_missing_mapping(api, postgres, provider):
    company = postgres.add_company(make_company(fieldMappings=[
        {"sourceField": "customerInfo.mobile", "targetField": "phone", "required": True},
        {"sourceField": "orderNumber", "targetField": "ref"},
    ]))
    order = postgres.add_order(make_order(customerInfo={"firstName": "Ada"}))

    resp = await api.post("/delivery/send", json={"orderId": str(order.id), "companyId": str(company.id)})

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "MAPPING_MISSING"
    assert body["missingFields"] == [{"sourceField": "customerInfo.mobile", "targetField": "phone"}]
    assert body["payloadPreview"] == {"ref": "ORD-1001"}
    assert postgres.orders[order.id].delivery_company is None


async def test_send_order_params_missing(api, postgres, provider):
    company = postgres.add_company(make_company(apiConfiguration={
        "baseUrl": "https://shop.odoo.test/api/orders",
        "format": "jsonrpc",
        "method": "create_order",
    }))
    order = postgres.add_order(make_order())

    resp = await api.post("/delivery/send", json={"orderId": str(order.id), "companyId": str(company.id)})

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "PARAMS_MISSING"
    assert body["message"] == "Missing required API params: db, password, username"
    assert body["details"]["missingParams"] == ["db", "password", "username"]
    assert provider.requests == []


@pytest.mark.usefixtures("delivery_debug")
async def test_provider_failure_is_500_and_not_persisted(api, postgres, provider):
    provider.responder = lambda request: httpx.Response(503, text="unavailable")
    company = postgres.add_company(make_company())
    order = postgres.add_order(make_order())

    resp = await api.post("/delivery/send", json={"orderId": str(order.id), "companyId": str(company.id)})

    assert resp.status_code == 500
    assert "503" in resp.json()["message"]
    assert postgres.orders[order.id].delivery_status is None
    assert postgres.commits == 0


async def test_send_unknown_order(api, postgres):
    company = postgres.add_company(sandbox_company())

    resp = await api.post("/delivery/send", json={"orderId": str(uuid.uuid4()), "companyId": str(company.id)})

    assert resp.status_code == 404
    assert resp.json() == {"message": "Order not found"}


async def test_legacy_order_path(api, postgres):
    company = postgres.add_company(sandbox_company())
    order = postgres.add_order(make_order())

    resp = await api.post("/delivery/order", json={
        "order": {"_id": str(order.id)},
        "companyId": str(company.id),
        "mappedData": {"deliveryFee": 3},
    })
    missing_id = await api.post("/delivery/order", json={"order": {}, "companyId": str(company.id)})

    assert resp.status_code == 200
    assert postgres.orders[order.id].delivery_fee == 3
    assert missing_id.status_code == 400


async def test_batch_send_collects_results(api, postgres):
    company = postgres.add_company(sandbox_company())
    first = postgres.add_order(make_order(orderNumber="ORD-1"))
    missing = uuid.uuid4()

    resp = await api.post("/delivery/send/batch", json={
        "orderIds": [str(missing), str(first.id)],
        "companyId": str(company.id),
    })

    body = resp.json()
    assert resp.status_code == 200
    assert body["success"] is False
    assert body["company"] == {"id": str(company.id), "name": "Fast Courier"}
    assert body["summary"] == {"total": 2, "succeeded": 1, "failed": 1}
    assert body["results"][0] == {"orderId": str(missing), "success": False, "error": "Order not found", "code": None}
    assert body["results"][1]["trackingNumber"].startswith("TEST-ORD-1-")


async def test_batch_send_isolates_unexpected_failures(api, postgres, monkeypatch):
    company = postgres.add_company(sandbox_company())
    first = postgres.add_order(make_order(orderNumber="ORD-1"))
    second = postgres.add_order(make_order(orderNumber="ORD-2"))
    save_delivery = postgres.save_delivery

    async def flaky_save(db, order_id, fields):
        if order_id == first.id:
            raise RuntimeError("deadlock detected")
        await save_delivery(db, order_id, fields)

    monkeypatch.setattr(postgres, "save_delivery", flaky_save)

    resp = await api.post("/delivery/send/batch", json={
        "orderIds": [str(first.id), str(second.id)],
        "companyId": str(company.id),
    })

    body = resp.json()
    assert resp.status_code == 200
    assert body["summary"] == {"total": 2, "succeeded": 1, "failed": 1}
    assert body["results"][0] == {"orderId": str(first.id), "success": False, "error": "deadlock detected", "code": None}
    assert body["results"][1]["success"] is True
    assert postgres.orders[first.id].delivery_status is None
    assert postgres.orders[second.id].delivery_tracking_number.startswith("TEST-ORD-2-")


async def test_batch_send_stop_on_error(api, postgres):
    company = postgres.add_company(make_company(fieldMappings=[
        {"sourceField": "deliveryNotes", "targetField": "notes", "required": True},
    ]))
    first = postgres.add_order(make_order(orderNumber="ORD-1"))
    second = postgres.add_order(make_order(orderNumber="ORD-2"))

    resp = await api.post("/delivery/send/batch", json={
        "orderIds": [str(first.id), str(second.id)],
        "companyId": str(company.id),
        "stopOnError": True,
    })

    body = resp.json()
    assert body["summary"] == {"total": 2, "succeeded": 0, "failed": 1}
    assert len(body["results"]) == 1
    assert body["results"][0]["code"] == "MAPPING_MISSING"
    assert body["results"][0]["missing"] == [{"sourceField": "deliveryNotes", "targetField": "notes"}]


async def test_batch_send_reports_config_invalid(api, postgres):
    company = postgres.add_company(make_company(isActive=False))
    order = postgres.add_order(make_order())

    resp = await api.post("/delivery/send/batch", json={"orderIds": [str(order.id)], "companyId": str(company.id)})

    result = resp.json()["results"][0]
    assert result["code"] == "CONFIG_INVALID"
    assert result["success"] is False


async def test_batch_assign(api, postgres, provider):
    company = postgres.add_company(make_company())
    order = postgres.add_order(make_order())

    resp = await api.post("/delivery/assign/batch", json={
        "orderIds": [str(order.id), str(uuid.uuid4())],
        "companyId": str(company.id),
        "trackingNumber": "MANUAL-1",
        "deliveryStatus": "picked_up",
        "orderStatus": "shipped",
    })

    assert resp.status_code == 200
    assert resp.json()["modifiedCount"] == 1
    stored = postgres.orders[order.id]
    assert stored.tracking_number == stored.delivery_tracking_number == "MANUAL-1"
    assert stored.delivery_status is DeliveryStatus.PICKED_UP
    assert stored.status.value == "shipped"
    assert provider.requests == []


async def test_validate_config_reports_db_sources(api, postgres):
    company = postgres.add_company(make_company(
        apiConfiguration={"baseUrl": "https://api.courier.test/orders", "requiredParams": ["db"], "queryParams": {"db": "q"}},
        credentials={"database": "cred"},
    ))

    resp = await api.get(f"/delivery/companies/{company.id}/validate-config")

    body = resp.json()
    assert body["success"] is True
    assert body["db"]["effectiveDb"] == "cred"
    assert body["db"]["sources"] == {
        "apiParamsDb": None,
        "queryDb": "q",
        "credentialsDb": "cred",
        "customFieldsDb": None,
        "envDb": None,
    }
    assert body["details"] == {"authMethod": "none", "format": "rest", "requiredParams": ["db"]}


async def test_validate_field_mappings(api, postgres):
    valid = postgres.add_company(make_company(name="A", fieldMappings=[
        {"sourceField": "orderNumber", "targetField": "ref", "required": True},
    ]))
    invalid = postgres.add_company(make_company(name="B", fieldMappings=[
        {"sourceField": "shippingAddress.zip", "targetField": "zip", "required": True},
    ]))
    order = postgres.add_order(make_order())

    single = await api.post("/delivery/validate-field-mappings", json={"orderId": str(order.id), "companyId": str(invalid.id)})
    bulk = await api.post("/delivery/validate-field-mappings/bulk", json={"orderId": str(order.id)})

    data = single.json()["data"]
    assert data["isValid"] is False
    assert data["errors"] == ["Missing required fields"]
    assert data["missingFields"] == [{"sourceField": "shippingAddress.zip", "targetField": "zip"}]

    bulk_data = bulk.json()["data"]
    assert bulk_data["allValid"] is False
    assert [(r["companyName"], r["isValid"]) for r in bulk_data["results"]] == [("A", True), ("B", False)]
    assert bulk_data["results"][0]["payloadPreview"] == {"ref": "ORD-1001"}
    assert valid.id != invalid.id


async def test_delivery_status_without_status_url(api, postgres):
    company = postgres.add_company(make_company())
    order = postgres.add_order(make_order(deliveryCompany=str(company.id), deliveryStatus="in_transit"))
    unassigned = postgres.add_order(make_order(orderNumber="ORD-2"))

    resp = await api.get(f"/delivery/status/{order.id}")
    not_assigned = await api.get(f"/delivery/status/{unassigned.id}")

    assert resp.json()["status"] == "in_transit"
    assert resp.json()["internalStatus"] == "in_transit"
    assert not_assigned.status_code == 400


async def test_create_order_auto_dispatches(api, postgres):
    company = postgres.add_company(sandbox_company(autoDispatchOnOrderCreate=True))

    resp = await api.post("/orders", json={
        "orderNumber": "ORD-77",
        "customerInfo": {"firstName": "Ada"},
        "shippingFee": 6,
    })

    assert resp.status_code == 201
    body = resp.json()
    assert body["autoDispatch"]["success"] is True
    assert body["autoDispatch"]["companyId"] == str(company.id)
    assert body["order"]["deliveryTrackingNumber"].startswith("TEST-ORD-77-")
    assert body["order"]["deliveryFee"] == 6


async def test_create_order_auto_dispatch_reasons(api, postgres):
    no_company = await api.post("/orders", json={"orderNumber": "ORD-1"})

    postgres.add_company(sandbox_company(autoDispatchOnOrderCreate=True, autoDispatchStatuses=["processing"]))
    not_eligible = await api.post("/orders", json={"orderNumber": "ORD-2"})

    assert no_company.json()["autoDispatch"] == {"success": False, "reason": "NO_AUTO_COMPANY"}
    assert not_eligible.json()["autoDispatch"] == {"success": False, "reason": "STATUS_NOT_ELIGIBLE", "orderStatus": "pending"}


async def test_create_order_auto_dispatch_validation_failures(api, postgres):
    company = postgres.add_company(make_company(
        autoDispatchOnOrderCreate=True,
        apiConfiguration={"baseUrl": "https://api.courier.test/orders", "authMethod": "bearer"},
    ))
    invalid = await api.post("/orders", json={"orderNumber": "ORD-1"})

    postgres.companies[company.id] = make_company(
        id=str(company.id),
        autoDispatchOnOrderCreate=True,
        fieldMappings=[{"sourceField": "customerInfo.email", "targetField": "email", "required": True}],
    )
    unmapped = await api.post("/orders", json={"orderNumber": "ORD-2"})

    assert invalid.status_code == 201
    assert invalid.json()["autoDispatch"] == {"success": False, "reason": "INVALID_CONFIGURATION", "issues": ["missing_bearer_token"]}
    assert unmapped.json()["autoDispatch"]["reason"] == "MISSING_MAPPINGS"


async def test_create_order_auto_dispatch_error_does_not_fail(api, postgres, provider):
    provider.responder = lambda request: httpx.Response(500, text="down")
    postgres.add_company(make_company(autoDispatchOnOrderCreate=True))

    resp = await api.post("/orders", json={"orderNumber": "ORD-1"})

    assert resp.status_code == 201
    assert resp.json()["autoDispatch"]["reason"] == "AUTO_DISPATCH_ERROR"


async def test_company_crud(api, postgres):
    created = await api.post("/delivery/companies", json={
        "name": "New Courier",
        "code": "NEW",
        "statusMapping": [
            {"companyStatus": "OK", "internalStatus": "delivered"},
            {"companyStatus": " ", "internalStatus": "returned"},
        ],
    })
    company_id = created.json()["id"]

    fetched = await api.get(f"/delivery/companies/{company_id}")
    updated = await api.put(f"/delivery/companies/{company_id}", json={"isActive": False})
    active = await api.get("/delivery/companies/public/active")
    mappings = await api.put(f"/delivery/companies/{company_id}/field-mappings", json={
        "fieldMappings": [{"sourceField": "orderNumber", "targetField": "ref"}],
        "customFields": {"service": "express"},
    })
    deleted = await api.delete(f"/delivery/companies/{company_id}")
    missing = await api.get(f"/delivery/companies/{company_id}")

    assert created.status_code == 201
    assert created.json()["statusMapping"] == [{"companyStatus": "OK", "internalStatus": "delivered"}]
    assert fetched.json()["code"] == "NEW"
    assert updated.json()["isActive"] is False
    assert active.json() == []
    assert mappings.json() == {"message": "Field mappings updated successfully"}
    assert deleted.json() == {"message": "Delivery company deleted successfully"}
    assert missing.status_code == 404


async def test_calculate_fee(api, postgres):
    company = postgres.add_company(make_company())

    cheap = await api.post(f"/delivery/companies/{company.id}/calculate-fee", json={"totalAmount": 99.99})
    free = await api.post(f"/delivery/companies/{company.id}/calculate-fee", json={"totalAmount": 100})

    assert cheap.json() == {"fee": 5}
    assert free.json() == {"fee": 0}


async def test_connection_endpoint(api, postgres, provider):
    reachable = postgres.add_company(make_company())
    no_url = postgres.add_company(make_company(name="No URL", apiConfiguration={"format": "rest"}))

    ok = await api.post(f"/delivery/companies/{reachable.id}/test-connection")
    failed = await api.post(f"/delivery/companies/{no_url.id}/test-connection")

    assert ok.json() == {"success": True, "message": "Connection to Fast Courier successful", "status": 200}
    assert failed.status_code == 400
    assert failed.json() == {"success": False, "message": "No API URL configured"}


async def test_delivery_orders_listing(api, postgres):
    company = postgres.add_company(sandbox_company())
    order = postgres.add_order(make_order())
    await api.post("/delivery/send", json={"orderId": str(order.id), "companyId": str(company.id)})

    resp = await api.get("/delivery/orders", params={"orderId": str(order.id)})

    docs = resp.json()["docs"]
    assert len(docs) == 1
    assert docs[0]["orderNumber"] == "ORD-1001"
    assert docs[0]["deliveryCompany"] == {"_id": str(company.id), "name": "Fast Courier", "code": "FAST"}
    assert docs[0]["status"] == "assigned"
