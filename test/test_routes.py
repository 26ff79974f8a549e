from _helper import make_order
from app.order_state import DriverStatus, OrderStatus, OrderType

ADMIN_HEADERS = {"X-Actor-Role": "ADMIN", "X-Actor-Id": "admin-1"}
DRIVER_HEADERS = {"X-Actor-Role": "DRIVER", "X-Actor-Id": "driver-1"}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_get_order_includes_display(client):
    resp = client.get("/orders/ord-catering")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ASSIGNED"
    assert body["display"] == {"label": "Assigned", "colorToken": "blue", "iconToken": "truck"}
    assert body["driverDisplay"]["label"] == "Assigned"
    assert body["driverProgress"] == 0
    assert body["nextDriverStatus"] == "STARTED"


def test_get_order_with_driver_status_outside_sequence(client, store):
    store.orders["ord-odd"] = make_order(
        "ord-odd",
        status=OrderStatus.ASSIGNED,
        driver_status=DriverStatus.STARTED,
        order_type=OrderType.ON_DEMAND,
    )
    resp = client.get("/orders/ord-odd")
    assert resp.status_code == 200
    body = resp.json()
    assert body["driverDisplay"]["label"] == "Started"
    assert body["driverProgress"] is None
    assert body["nextDriverStatus"] is None


def test_driver_at_client_moves_order_in_progress(client, store, broker):
    client.patch("/orders/ord-catering/status", json={"driverStatus": "STARTED"}, headers=DRIVER_HEADERS)
    resp = client.patch("/orders/ord-catering/status", json={"driverStatus": "ARRIVED_TO_CLIENT"}, headers=DRIVER_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["status"] == "IN_PROGRESS"
    assert resp.json()["display"]["label"] == "In Progress"
    assert [s for _, s in broker.notifications] == [OrderStatus.IN_PROGRESS]


def test_get_missing_order_is_404(client):
    resp = client.get("/orders/nope")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


def test_admin_changes_order_status(client, store, broker):
    resp = client.patch("/orders/ord-active/status", json={"status": "COMPLETED"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["status"] == "COMPLETED"
    assert resp.json()["display"]["colorToken"] == "emerald"
    assert store.orders["ord-active"].status == OrderStatus.COMPLETED
    assert len(broker.notifications) == 1


def test_driver_status_camel_case_payload(client, store):
    resp = client.patch("/orders/ord-catering/status", json={"driverStatus": "STARTED"}, headers=DRIVER_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["driver_status"] == "STARTED"
    assert resp.json()["driverProgress"] == 33
    assert store.orders["ord-catering"].driver_status == DriverStatus.STARTED


def test_driver_status_snake_case_payload(client):
    resp = client.patch("/orders/ord-catering/status", json={"driver_status": "started"}, headers=DRIVER_HEADERS)
    assert resp.status_code == 200


def test_invalid_transition_is_400(client):
    resp = client.patch("/orders/ord-cancelled/status", json={"status": "ACTIVE"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "invalid_transition"
    assert body["details"]["current"] == "CANCELLED"


def test_unknown_status_is_400(client, store):
    resp = client.patch("/orders/ord-active/status", json={"status": "LOST_IN_TRANSIT"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"] == "unknown_status"
    assert store.writes == []


def test_non_string_status_is_unknown_status(client, store):
    resp = client.patch("/orders/ord-active/status", json={"status": 5}, headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "unknown_status"
    assert body["details"]["value"] == "5"
    assert store.writes == []


def test_non_string_driver_status_is_unknown_status(client, store):
    resp = client.patch("/orders/ord-catering/status", json={"driverStatus": ["STARTED"]}, headers=DRIVER_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"] == "unknown_status"
    assert store.writes == []


def test_client_role_is_403(client, store):
    resp = client.patch("/orders/ord-active/status", json={"status": "CANCELLED"}, headers={"X-Actor-Role": "CLIENT"})
    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"
    assert store.writes == []


def test_unknown_role_is_403(client):
    resp = client.patch("/orders/ord-active/status", json={"status": "CANCELLED"}, headers={"X-Actor-Role": "ROOT"})
    assert resp.status_code == 403


def test_missing_role_header_is_rejected(client):
    resp = client.patch("/orders/ord-active/status", json={"status": "CANCELLED"})
    assert resp.status_code == 422


def test_missing_order_is_404(client):
    resp = client.patch("/orders/nope/status", json={"status": "CANCELLED"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 404


def test_body_needs_exactly_one_status(client):
    resp = client.patch("/orders/ord-active/status", json={}, headers=ADMIN_HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_request"
    resp = client.patch(
        "/orders/ord-catering/status",
        json={"status": "COMPLETED", "driverStatus": "COMPLETED"},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 400
    body = resp.json()
    assert set(body) == {"error", "message", "details"}
    assert body["error"] == "invalid_request"


def test_persistence_failure_is_500(client, store):
    store.fail_on["update_order_status"] = ConnectionError("db down")
    resp = client.patch("/orders/ord-active/status", json={"status": "CANCELLED"}, headers=ADMIN_HEADERS)
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "persistence_failure"
    assert "db down" not in body["message"]


def test_partial_failure_is_500(client, store):
    client.patch("/orders/ord-catering/status", json={"driverStatus": "STARTED"}, headers=DRIVER_HEADERS)
    client.patch("/orders/ord-catering/status", json={"driverStatus": "ARRIVED_TO_CLIENT"}, headers=DRIVER_HEADERS)
    store.fail_on["update_order_status"] = ConnectionError("db down")

    resp = client.patch("/orders/ord-catering/status", json={"driverStatus": "COMPLETED"}, headers=DRIVER_HEADERS)
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "partial_failure"
    assert body["details"]["succeeded"] == ["driver_status"]
    assert body["details"]["failed"] == "order_status"


def test_metrics_endpoint(client):
    client.patch("/orders/ord-active/status", json={"status": "CONFIRMED"}, headers=ADMIN_HEADERS)
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "status_transitions_total" in resp.text
