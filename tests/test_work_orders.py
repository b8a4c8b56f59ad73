import re
import uuid

from fieldops.models.models import WorkOrder, WorkOrderDocument, WorkOrderHousing, WorkOrderService

from conftest import auth_headers


def _codes(service):
    return [h["measure_code"] for h in service["housings"]]


def test_create_assigns_sequential_order_numbers(client, seed, admin_headers):
    body = {
        "clientId": str(seed.client.id),
        "equipmentId": str(seed.equipment.id),
        "title": "Pump overhaul",
        "services": [],
    }
    first = client.post("/work-orders", json=body, headers=admin_headers)
    second = client.post("/work-orders", json=body, headers=admin_headers)

    assert first.status_code == 201
    assert first.json()["orderNumber"] == "OT-000001"
    assert second.json()["orderNumber"] == "OT-000002"
    assert re.fullmatch(r"OT-\d{6}", second.json()["orderNumber"])


def test_housing_count_generates_lettered_housings(make_order):
    order = make_order()

    assert order["status"] == "created"
    assert len(order["services"]) == 1
    assert order["services"][0]["housing_count"] == 3
    assert _codes(order["services"][0]) == ["A", "B", "C"]


def test_codes_restart_for_each_service(make_order, seed):
    order = make_order(services=[
        {"serviceId": str(seed.calibration.id), "housingCount": 2},
        {"serviceId": str(seed.alignment.id), "housingCount": 3},
    ])

    assert [_codes(s) for s in order["services"]] == [["A", "B"], ["A", "B", "C"]]


def test_supplied_housings_keep_their_details(make_order, seed):
    order = make_order(services=[{
        "serviceId": str(seed.calibration.id),
        "housings": [
            {"measureCode": "A", "description": "Inlet", "nominalValue": 12.5, "nominalUnit": "mm", "tolerance": "±0.2"},
            {"measureCode": "b", "description": "Outlet"},
        ],
    }])

    service = order["services"][0]
    assert service["housing_count"] == 2
    assert _codes(service) == ["A", "B"]
    assert service["housings"][0]["nominal_value"] == 12.5
    assert service["housings"][0]["nominal_unit"] == "mm"


def test_housing_without_code_rejects_whole_order(client, db, seed, admin_headers):
    body = {
        "clientId": str(seed.client.id),
        "equipmentId": str(seed.equipment.id),
        "title": "Pump overhaul",
        "services": [{"serviceId": str(seed.calibration.id), "housings": [{"measureCode": "A"}, {"description": "no code"}]}],
    }
    resp = client.post("/work-orders", json=body, headers=admin_headers)

    assert resp.status_code == 400
    assert db.query(WorkOrder).count() == 0
    assert db.query(WorkOrderHousing).count() == 0


def test_out_of_sequence_code_is_rejected(client, seed, admin_headers):
    body = {
        "clientId": str(seed.client.id),
        "equipmentId": str(seed.equipment.id),
        "title": "Pump overhaul",
        "services": [{"serviceId": str(seed.calibration.id), "housings": [{"measureCode": "A"}, {"measureCode": "C"}]}],
    }
    assert client.post("/work-orders", json=body, headers=admin_headers).status_code == 400


def test_nominal_value_requires_unit(client, seed, admin_headers, make_order):
    body = {
        "clientId": str(seed.client.id),
        "equipmentId": str(seed.equipment.id),
        "title": "Pump overhaul",
        "services": [{"serviceId": str(seed.calibration.id), "housings": [{"measureCode": "A", "nominalValue": 3}]}],
    }
    assert client.post("/work-orders", json=body, headers=admin_headers).status_code == 400

    order = make_order()
    edit = {"services": [{"serviceId": str(seed.calibration.id), "housings": [{"measureCode": "A", "unit": "mm"}]}]}
    assert client.put(f"/work-orders/{order['id']}", json=edit, headers=admin_headers).status_code == 400


def test_housing_count_must_match_supplied_housings(client, seed, admin_headers):
    body = {
        "clientId": str(seed.client.id),
        "equipmentId": str(seed.equipment.id),
        "title": "Pump overhaul",
        "services": [{"serviceId": str(seed.calibration.id), "housingCount": 3, "housings": [{"measureCode": "A"}]}],
    }
    assert client.post("/work-orders", json=body, headers=admin_headers).status_code == 400


def test_missing_service_id_is_rejected(client, seed, admin_headers):
    body = {
        "clientId": str(seed.client.id),
        "equipmentId": str(seed.equipment.id),
        "title": "Pump overhaul",
        "services": [{"serviceId": "", "housingCount": 1}],
    }
    assert client.post("/work-orders", json=body, headers=admin_headers).status_code == 400


def test_required_fields(client, seed, admin_headers):
    resp = client.post("/work-orders", json={"clientId": str(seed.client.id), "title": "x"}, headers=admin_headers)
    assert resp.status_code == 400
    assert "required" in resp.json()["detail"]


def test_technician_cannot_create(client, seed, tech_headers):
    body = {"clientId": str(seed.client.id), "equipmentId": str(seed.equipment.id), "title": "x"}
    assert client.post("/work-orders", json=body, headers=tech_headers).status_code == 403


def test_assignment_advances_status(client, seed, admin_headers, make_order):
    order = make_order(assignedTechnicianId=str(seed.tech.id))
    assert order["status"] == "assigned"
    assert order["technician_name"] == "Tech One"

    resp = client.put(f"/work-orders/{order['id']}", json={"assignedTechnicianId": None}, headers=admin_headers)
    assert resp.status_code == 200
    order = client.get(f"/work-orders/{order['id']}", headers=admin_headers).json()
    assert order["status"] == "created"
    assert order["assigned_technician_id"] is None


def test_assigning_unknown_or_inactive_technician_fails(client, seed, admin_headers, make_order):
    order = make_order()
    for user in (seed.inactive_tech, seed.admin):
        resp = client.put(
            f"/work-orders/{order['id']}",
            json={"assignedTechnicianId": str(user.id)},
            headers=admin_headers,
        )
        assert resp.status_code == 404


def test_start_date_is_set_once(client, seed, tech_headers, make_order):
    order = make_order(assignedTechnicianId=str(seed.tech.id))
    url = f"/work-orders/{order['id']}"

    assert client.put(url, json={"status": "in_progress"}, headers=tech_headers).status_code == 200
    first = client.get(url, headers=tech_headers).json()["start_date"]
    assert first is not None

    assert client.put(url, json={"status": "on_hold"}, headers=tech_headers).status_code == 200
    assert client.put(url, json={"status": "in_progress"}, headers=tech_headers).status_code == 200
    assert client.get(url, headers=tech_headers).json()["start_date"] == first


def test_completion_date_is_set_once(client, seed, admin_headers, make_order):
    order = make_order()
    url = f"/work-orders/{order['id']}"

    client.put(url, json={"status": "completed"}, headers=admin_headers)
    first = client.get(url, headers=admin_headers).json()["completion_date"]
    client.put(url, json={"status": "in_progress"}, headers=admin_headers)
    client.put(url, json={"status": "completed"}, headers=admin_headers)

    assert first is not None
    assert client.get(url, headers=admin_headers).json()["completion_date"] == first


def test_unknown_status_is_rejected(client, seed, admin_headers, make_order):
    order = make_order()
    resp = client.put(f"/work-orders/{order['id']}", json={"status": "archived"}, headers=admin_headers)
    assert resp.status_code == 422


def test_technician_cannot_edit_title_of_foreign_order(client, db, seed, other_tech_headers, make_order):
    order = make_order(assignedTechnicianId=str(seed.tech.id))

    resp = client.put(f"/work-orders/{order['id']}", json={"title": "Hijacked"}, headers=other_tech_headers)

    assert resp.status_code == 403
    db.expire_all()
    assert db.get(WorkOrder, uuid.UUID(order["id"])).title == "Pump overhaul"


def test_technician_is_limited_to_status(client, seed, tech_headers, make_order):
    order = make_order(assignedTechnicianId=str(seed.tech.id))
    url = f"/work-orders/{order['id']}"

    resp = client.put(url, json={"status": "in_progress", "priority": "urgent"}, headers=tech_headers)
    assert resp.status_code == 403
    assert client.get(url, headers=tech_headers).json()["status"] == "assigned"


def test_technician_cannot_read_foreign_order(client, seed, other_tech_headers, make_order):
    order = make_order(assignedTechnicianId=str(seed.tech.id))
    assert client.get(f"/work-orders/{order['id']}", headers=other_tech_headers).status_code == 403


def test_empty_update_is_rejected(client, seed, admin_headers, make_order):
    order = make_order()
    assert client.put(f"/work-orders/{order['id']}", json={}, headers=admin_headers).status_code == 400


def test_partial_update_leaves_other_fields(client, seed, admin_headers, make_order):
    order = make_order(description="Original", priority="high")
    url = f"/work-orders/{order['id']}"

    client.put(url, json={"title": "Renamed"}, headers=admin_headers)
    updated = client.get(url, headers=admin_headers).json()

    assert updated["title"] == "Renamed"
    assert updated["description"] == "Original"
    assert updated["priority"] == "high"

    client.put(url, json={"description": None}, headers=admin_headers)
    assert client.get(url, headers=admin_headers).json()["description"] is None


def test_services_are_replaced_entirely(client, db, seed, admin_headers, make_order):
    order = make_order()
    url = f"/work-orders/{order['id']}"

    resp = client.put(url, json={"services": [{"serviceId": str(seed.alignment.id), "housingCount": 2}]}, headers=admin_headers)
    assert resp.status_code == 200

    updated = client.get(url, headers=admin_headers).json()
    assert [s["service_id"] for s in updated["services"]] == [str(seed.alignment.id)]
    assert _codes(updated["services"][0]) == ["A", "B"]
    assert db.query(WorkOrderService).count() == 1
    assert db.query(WorkOrderHousing).count() == 2

    # Same service again replaces rather than duplicates
    client.put(url, json={"services": [{"serviceId": str(seed.alignment.id), "housingCount": 1}]}, headers=admin_headers)
    assert db.query(WorkOrderHousing).count() == 1


def test_rejected_services_replace_keeps_old_configuration(client, seed, admin_headers, make_order):
    order = make_order()
    url = f"/work-orders/{order['id']}"

    resp = client.put(url, json={"services": [{"housingCount": 2}]}, headers=admin_headers)

    assert resp.status_code == 400
    assert _codes(client.get(url, headers=admin_headers).json()["services"][0]) == ["A", "B", "C"]


def test_equipment_change_must_belong_to_client(client, seed, admin_headers, make_order):
    order = make_order()
    url = f"/work-orders/{order['id']}"

    assert client.put(url, json={"equipmentId": str(seed.foreign_equipment.id)}, headers=admin_headers).status_code == 400
    assert client.put(url, json={"equipmentId": str(seed.second_equipment.id)}, headers=admin_headers).status_code == 200
    assert client.get(url, headers=admin_headers).json()["equipment_id"] == str(seed.second_equipment.id)


def test_list_is_scoped_for_technicians(client, seed, admin_headers, tech_headers, make_order):
    mine = make_order(assignedTechnicianId=str(seed.tech.id))
    make_order(assignedTechnicianId=str(seed.other_tech.id))
    make_order()

    assert len(client.get("/work-orders", headers=admin_headers).json()) == 3
    listed = client.get(
        "/work-orders",
        params={"technician_id": str(seed.other_tech.id)},
        headers=tech_headers,
    ).json()
    assert [o["id"] for o in listed] == [mine["id"]]
    assert client.get("/work-orders", params={"status": "created"}, headers=admin_headers).json()[0]["status"] == "created"


def test_delete_keeps_documents(client, db, seed, admin_headers, make_order):
    order = make_order()
    doc = client.post(
        f"/work-orders/{order['id']}/documents",
        json={"filePath": "docs/manual.pdf", "fileName": "manual.pdf"},
        headers=admin_headers,
    ).json()

    resp = client.delete(f"/work-orders/{order['id']}", headers=admin_headers)

    assert resp.status_code == 200
    assert client.get(f"/work-orders/{order['id']}", headers=admin_headers).status_code == 404
    db.expire_all()
    assert db.query(WorkOrder).count() == 0
    assert db.query(WorkOrderHousing).count() == 0
    remaining = db.query(WorkOrderDocument).all()
    assert [str(d.id) for d in remaining] == [doc["id"]]
    assert remaining[0].work_order_id is None


def test_observations_and_signature(client, seed, tech_headers, make_order):
    order = make_order(assignedTechnicianId=str(seed.tech.id))
    url = f"/work-orders/{order['id']}"

    assert client.post(f"{url}/observations", json={"observation": "Seal worn"}, headers=tech_headers).status_code == 201
    assert client.post(f"{url}/observations", json={"observation": " "}, headers=tech_headers).status_code == 400
    assert client.get(f"{url}/conformity-signature", headers=tech_headers).json() is None

    client.post(f"{url}/conformity-signature", json={"signatureData": "data:image/png;base64,AAA", "signedBy": "J. Client"}, headers=tech_headers)
    client.post(f"{url}/conformity-signature", json={"signatureData": "data:image/png;base64,BBB", "signedBy": "K. Client"}, headers=tech_headers)

    latest = client.get(f"{url}/conformity-signature", headers=tech_headers).json()
    assert latest["signed_by_name"] == "K. Client"
    assert latest["signature_data"].endswith("BBB")

    full = client.get(url, headers=tech_headers).json()
    assert [o["observation"] for o in full["observations"]] == ["Seal worn"]
    assert full["conformity_signature"]["signed_by_name"] == "K. Client"
    assert "signature_data" not in full["conformity_signature"]


def test_signature_requires_signer(client, seed, admin_headers, make_order):
    order = make_order()
    resp = client.post(f"/work-orders/{order['id']}/conformity-signature", json={"signatureData": "x"}, headers=admin_headers)
    assert resp.status_code == 400


def test_unknown_order_is_404(client, seed, admin_headers):
    resp = client.get("/work-orders/00000000-0000-0000-0000-000000000000", headers=admin_headers)
    assert resp.status_code == 404


def test_requires_authentication(client, seed):
    assert client.get("/work-orders").status_code == 401


def test_plain_user_cannot_update(client, seed, admin_headers, make_order):
    order = make_order()
    resp = client.put(f"/work-orders/{order['id']}", json={"status": "cancelled"}, headers=auth_headers(seed.plain_user))
    assert resp.status_code == 403
