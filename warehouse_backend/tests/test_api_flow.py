"""
End-to-end API tests: the parcel journey over HTTP, identity, roles and
error response format.
"""

import pytest

from conftest import create_user, headers_for
from warehouse_backend.app.models.enums import UserRole

ADDRESS = {"street": "12 Mabini St", "city": "Quezon City", "province": "Metro Manila", "zip_code": "1100"}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["redis"] == "up"


@pytest.mark.asyncio
async def test_parcel_journey(client, staff_user, admin_user, member):
    staff = headers_for(staff_user)
    owner = headers_for(member)

    # 1. Intake
    response = await client.post("/v1/parcels", json={
        "tracking_code": "TRK-API-1",
        "member_code": member.member_code,
        "weight_kg": 2.3,
    }, headers=staff)
    assert response.status_code == 201, response.text
    parcel = response.json()
    assert parcel["state"] == "ARRIVED"
    assert parcel["owner_id"] == member.id
    assert response.headers["Idempotent-Replayed"] == "false"
    parcel_id = parcel["id"]

    # 2. Store
    response = await client.get(f"/v1/parcels/{parcel_id}/next-states", headers=staff)
    assert response.json()["next_states"] == ["STORED"]

    response = await client.patch(f"/v1/parcels/{parcel_id}/state", json={"state": "STORED"}, headers=staff)
    assert response.status_code == 200, response.text
    assert response.json()["state"] == "STORED"

    # 3. Member sees the parcel and a fee estimate
    response = await client.get("/v1/parcels/mine", headers=owner)
    assert response.json()["total"] == 1

    response = await client.get(f"/v1/deliveries/fee-estimate/{parcel_id}", headers=owner)
    assert response.status_code == 200
    estimate = response.json()
    assert estimate["rounded_weight_kg"] == 3
    assert estimate["total_fee"] == 110.0

    # 4. Delivery
    response = await client.post("/v1/deliveries", json={"parcel_id": parcel_id, **ADDRESS}, headers=owner)
    assert response.status_code == 201, response.text
    delivery_id = response.json()["id"]
    assert response.json()["payment_status"] == "PENDING"

    for step in ("confirm-payment", "dispatch", "complete"):
        response = await client.post(f"/v1/deliveries/{delivery_id}/{step}", headers=staff)
        assert response.status_code == 200, response.text

    response = await client.get(f"/v1/parcels/{parcel_id}", headers=owner)
    assert response.json()["state"] == "DELIVERED"

    response = await client.get(f"/v1/parcels/{parcel_id}/history", headers=owner)
    assert [h["to_state"] for h in response.json()] == [
        "ARRIVED", "STORED", "DELIVERY_REQUESTED", "OUT_FOR_DELIVERY", "DELIVERED"
    ]

    # 5. Admin audit view
    response = await client.get(f"/v1/audit/parcels/{parcel_id}", headers=headers_for(admin_user))
    assert response.status_code == 200
    actions = [entry["action"] for entry in response.json()]
    assert actions[0] == "PARCEL_REGISTERED"
    assert actions[-1] == "DELIVERY_COMPLETED"


@pytest.mark.asyncio
async def test_exception_flow_over_http(client, staff_user, admin_user):
    staff = headers_for(staff_user)

    response = await client.post("/v1/parcels", json={"tracking_code": "TRK-API-2", "weight_kg": 1.0}, headers=staff)
    assert response.status_code == 201
    parcel = response.json()
    assert parcel["owner_id"] is None
    assert parcel["has_exception"] is True

    response = await client.patch(f"/v1/parcels/{parcel['id']}/state", json={"state": "STORED"}, headers=staff)
    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_PERM_001"

    response = await client.get("/v1/exceptions", params={"type": "MISSING_MEMBER_CODE"}, headers=staff)
    assert response.status_code == 200
    assert response.json()["total"] == 1

    response = await client.get(f"/v1/exceptions/parcel/{parcel['id']}", headers=staff)
    exception_id = response.json()[0]["id"]

    response = await client.post(f"/v1/exceptions/{exception_id}/assign", headers=staff)
    assert response.json()["status"] == "IN_PROGRESS"

    # Orphan parcel: last exception stays open until an owner exists
    response = await client.post(
        f"/v1/exceptions/{exception_id}/resolve", json={"resolution": "Label found"}, headers=staff
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_CONFLICT_001"


@pytest.mark.asyncio
async def test_missing_identity_headers(client):
    response = await client.get("/v1/parcels/mine")
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_role_header_must_match_user(client, member):
    headers = {"X-Actor-Id": str(member.id), "X-Actor-Role": "ADMIN"}
    response = await client.get("/v1/parcels/mine", headers=headers)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_inactive_user_rejected(client, session_factory):
    async with session_factory() as session:
        user = await create_user(session, "PHW-OFF001", is_active=False)

    response = await client.get("/v1/parcels/mine", headers=headers_for(user))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_member_cannot_register_parcels(client, member):
    response = await client.post(
        "/v1/parcels", json={"tracking_code": "TRK-API-3", "weight_kg": 1.0}, headers=headers_for(member)
    )
    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_FORBIDDEN"


@pytest.mark.asyncio
async def test_staff_cannot_read_audit_log(client, staff_user):
    response = await client.get("/v1/audit", headers=headers_for(staff_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_request_body_validation(client, staff_user):
    response = await client.post(
        "/v1/parcels", json={"tracking_code": "TRK-API-4", "weight_kg": 75}, headers=headers_for(staff_user)
    )
    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "ERR_VALIDATION"
    assert body["details"]["errors"][0]["loc"][-1] == "weight_kg"


@pytest.mark.asyncio
async def test_duplicate_tracking_code(client, staff_user):
    payload = {"tracking_code": "TRK-API-5", "weight_kg": 1.0}
    first = await client.post("/v1/parcels", json=payload, headers=headers_for(staff_user))
    second = await client.post("/v1/parcels", json=payload, headers=headers_for(staff_user))

    assert first.status_code == 201
    assert second.status_code == 409
    body = second.json()
    assert body["error_code"] == "ERR_CONFLICT_001"
    assert body["details"]["tracking_code"] == "TRK-API-5"


@pytest.mark.asyncio
async def test_unknown_parcel_is_not_found(client, staff_user):
    response = await client.get("/v1/parcels/9999", headers=headers_for(staff_user))
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_member_cannot_read_others_parcel(client, staff_user, member, other_member):
    response = await client.post("/v1/parcels", json={
        "tracking_code": "TRK-API-6", "member_code": member.member_code, "weight_kg": 1.0
    }, headers=headers_for(staff_user))
    parcel_id = response.json()["id"]

    response = await client.get(f"/v1/parcels/{parcel_id}", headers=headers_for(other_member))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_soft_delete_hides_parcel(client, staff_user, admin_user):
    response = await client.post(
        "/v1/parcels", json={"tracking_code": "TRK-API-7", "weight_kg": 1.0}, headers=headers_for(staff_user)
    )
    parcel_id = response.json()["id"]

    response = await client.delete(f"/v1/parcels/{parcel_id}", headers=headers_for(staff_user))
    assert response.status_code == 403

    response = await client.delete(f"/v1/parcels/{parcel_id}", headers=headers_for(admin_user))
    assert response.status_code == 200

    response = await client.get(f"/v1/parcels/{parcel_id}", headers=headers_for(admin_user))
    assert response.status_code == 404
