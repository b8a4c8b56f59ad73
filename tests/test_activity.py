from sqlalchemy.exc import OperationalError

from fieldops.models.models import ActivityLog, WorkOrder
from fieldops.services import activity
from fieldops.services.activity import log_activity, verify_entry


def _descriptions(client, order_id, headers):
    resp = client.get(f"/work-orders/{order_id}/activity", headers=headers)
    assert resp.status_code == 200
    return [e["description"] for e in resp.json()]


def test_each_mutation_is_logged(client, seed, admin_headers, tech_headers, make_order):
    order = make_order()
    url = f"/work-orders/{order['id']}"

    client.put(url, json={"assignedTechnicianId": str(seed.tech.id)}, headers=admin_headers)
    client.put(url, json={"status": "in_progress"}, headers=tech_headers)
    client.post(f"{url}/measurements", json={"measurementType": "initial"}, headers=tech_headers)
    client.put(url, json={"status": "completed"}, headers=tech_headers)
    client.put(url, json={"title": "Pump overhaul, phase 2"}, headers=admin_headers)

    assert _descriptions(client, order["id"], admin_headers) == [
        f"Order created: {order['order_number']}",
        "Order assigned to Tech One",
        "Order started",
        "Initial measurement recorded",
        "Order completed",
        "Order updated",
    ]


def test_entries_carry_actor_and_context(client, seed, admin_headers, tech_headers, make_order):
    order = make_order(assignedTechnicianId=str(seed.tech.id))
    client.post(
        f"/work-orders/{order['id']}/measurements",
        json={"measurementType": "final", "housingMeasurements": [{"housingId": order["services"][0]["housings"][0]["id"]}]},
        headers=tech_headers,
    )

    entries = client.get(f"/work-orders/{order['id']}/activity", headers=tech_headers).json()
    measurement = entries[-1]
    assert measurement["entity_type"] == "measurement"
    assert measurement["actor_name"] == "Tech One"
    assert measurement["actor_role"] == "technician"
    assert measurement["context"] == {"measurement_type": "final", "housing_count": 1}


def test_rejected_update_is_not_logged(client, seed, admin_headers, other_tech_headers, make_order):
    order = make_order(assignedTechnicianId=str(seed.tech.id))
    client.put(f"/work-orders/{order['id']}", json={"title": "nope"}, headers=other_tech_headers)

    assert len(_descriptions(client, order["id"], admin_headers)) == 1


def test_log_failure_does_not_fail_the_operation(client, db, seed, admin_headers, monkeypatch):
    def broken_hash(**kwargs):
        raise OperationalError("INSERT INTO activity_log", {}, Exception("disk I/O error"))

    monkeypatch.setattr(activity, "compute_integrity_hash", broken_hash)
    resp = client.post(
        "/work-orders",
        json={"clientId": str(seed.client.id), "equipmentId": str(seed.equipment.id), "title": "Still created"},
        headers=admin_headers,
    )

    assert resp.status_code == 201
    assert db.query(WorkOrder).count() == 1
    assert db.query(ActivityLog).count() == 0


def test_integrity_hash_detects_tampering(db, seed):
    entry = log_activity(
        db,
        actor=seed.admin,
        action="UPDATE",
        entity_type="work_order",
        entity_id=None,
        description="Order started",
        context={"fields": ["status"]},
    )
    assert entry is not None

    db.expire_all()
    stored = db.query(ActivityLog).one()
    assert verify_entry(stored)

    stored.description = "Order cancelled"
    assert not verify_entry(stored)
