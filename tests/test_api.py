"""API tests for booking conflict checks, flows and conversations."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from bizops import main
from bizops.errors import StoreError
from bizops.main import (
    app,
    appointment_repo,
    block_repo,
    booking_item_repo,
    conflict_audit_repo,
    conversation_repo,
    flow_log_repo,
    flow_repo,
    order_repo,
)

STORE_ID = "store_1"
STAFF_ID = "staff_1"


@pytest.fixture(autouse=True)
def _clear_repos():
    repos = [
        appointment_repo,
        block_repo,
        booking_item_repo,
        conversation_repo,
        flow_log_repo,
        flow_repo,
        order_repo,
    ]
    for repo in repos:
        repo._store.clear()
    conflict_audit_repo._entries.clear()
    yield
    for repo in repos:
        repo._store.clear()
    conflict_audit_repo._entries.clear()


@pytest.fixture()
def client():
    return TestClient(app)


def _create_appointment(client: TestClient, scheduled_at: str, **extra) -> dict:
    body = {
        "store_id": STORE_ID,
        "staff_id": STAFF_ID,
        "scheduled_at": scheduled_at,
        "duration_minutes": 60,
        "status": "confirmed",
    }
    body.update(extra)
    resp = client.post("/appointments", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# /conflicts/check
# ---------------------------------------------------------------------------


def test_check_uses_camel_case_fields(client: TestClient):
    resp = client.post(
        "/blocks",
        json={
            "store_id": STORE_ID,
            "staff_id": STAFF_ID,
            "start_at": "2026-03-01T10:15:00Z",
            "end_at": "2026-03-01T10:45:00Z",
        },
    )
    assert resp.status_code == 201
    block_id = resp.json()["id"]

    resp = client.post(
        "/conflicts/check",
        json={
            "storeId": STORE_ID,
            "staffId": STAFF_ID,
            "startAt": "2026-03-01T10:00:00Z",
            "endAt": "2026-03-01T11:00:00Z",
        },
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["hasConflict"] is True
    assert len(data["conflicts"]) == 1
    conflict = data["conflicts"][0]
    assert conflict["type"] == "block"
    assert conflict["id"] == block_id
    assert conflict["startAt"].startswith("2026-03-01T10:15:00")
    assert "reason" not in conflict


def test_check_without_subject_reports_nothing(client: TestClient):
    _create_appointment(client, "2026-03-01T10:00:00Z")

    resp = client.post(
        "/conflicts/check",
        json={
            "storeId": STORE_ID,
            "startAt": "2026-03-01T10:00:00Z",
            "endAt": "2026-03-01T11:00:00Z",
        },
    )

    assert resp.status_code == 200
    assert resp.json() == {"hasConflict": False, "conflicts": []}


def test_check_returns_503_when_store_fails(client: TestClient, monkeypatch):
    async def _broken(*args, **kwargs):
        raise StoreError("timeout")

    monkeypatch.setattr(main.interval_store, "blocks_overlapping", _broken)

    resp = client.post(
        "/conflicts/check",
        json={
            "storeId": STORE_ID,
            "staffId": STAFF_ID,
            "startAt": "2026-03-01T10:00:00Z",
            "endAt": "2026-03-01T11:00:00Z",
        },
    )

    assert resp.status_code == 503


# ---------------------------------------------------------------------------
# Booking mutations
# ---------------------------------------------------------------------------


def test_overlapping_appointment_is_rejected_and_audited(client: TestClient):
    existing = _create_appointment(client, "2026-03-01T10:00:00Z")

    resp = client.post(
        "/appointments",
        json={
            "store_id": STORE_ID,
            "staff_id": STAFF_ID,
            "scheduled_at": "2026-03-01T10:30:00Z",
        },
    )

    assert resp.status_code == 409
    detail = resp.json()["detail"]
    assert detail["error"] == "Scheduling conflict detected"
    assert [c["id"] for c in detail["conflicts"]] == [existing["id"]]
    assert len(conflict_audit_repo.list_for_store(STORE_ID)) == 1
    assert len(appointment_repo.list_for_store(STORE_ID)) == 1


def test_back_to_back_appointments_are_allowed(client: TestClient):
    _create_appointment(client, "2026-03-01T10:00:00Z")

    _create_appointment(client, "2026-03-01T11:00:00Z")

    assert len(appointment_repo.list_for_store(STORE_ID)) == 2


def test_booking_item_conflicting_with_block_is_rejected(client: TestClient):
    appointment = _create_appointment(client, "2026-03-01T09:00:00Z")
    client.post(
        "/blocks",
        json={
            "store_id": STORE_ID,
            "staff_id": STAFF_ID,
            "start_at": "2026-03-01T12:00:00Z",
            "end_at": "2026-03-01T13:00:00Z",
            "reason": "Lunch",
        },
    )

    resp = client.post(
        "/booking-items",
        json={
            "store_id": STORE_ID,
            "appointment_id": appointment["id"],
            "staff_id": STAFF_ID,
            "start_at": "2026-03-01T12:30:00Z",
            "end_at": "2026-03-01T13:30:00Z",
        },
    )

    assert resp.status_code == 409
    [conflict] = resp.json()["detail"]["conflicts"]
    assert conflict["type"] == "block"
    assert conflict["reason"] == "Lunch"


def test_booking_item_for_unknown_appointment(client: TestClient):
    resp = client.post(
        "/booking-items",
        json={
            "store_id": STORE_ID,
            "appointment_id": "missing",
            "staff_id": STAFF_ID,
            "start_at": "2026-03-01T12:30:00Z",
            "end_at": "2026-03-01T13:30:00Z",
        },
    )

    assert resp.status_code == 404


def test_rescheduling_never_conflicts_with_itself(client: TestClient):
    appointment = _create_appointment(client, "2026-03-01T10:00:00Z")
    resp = client.post(
        "/booking-items",
        json={
            "store_id": STORE_ID,
            "appointment_id": appointment["id"],
            "staff_id": STAFF_ID,
            "start_at": "2026-03-01T10:00:00Z",
            "end_at": "2026-03-01T10:30:00Z",
        },
    )
    assert resp.status_code == 201

    resp = client.patch(
        f"/appointments/{appointment['id']}",
        json={"scheduled_at": "2026-03-01T10:15:00Z", "duration_minutes": 90},
    )

    assert resp.status_code == 200, resp.text
    assert resp.json()["duration_minutes"] == 90


def test_rescheduling_onto_another_appointment_is_rejected(client: TestClient):
    appointment = _create_appointment(client, "2026-03-01T10:00:00Z")
    _create_appointment(client, "2026-03-01T11:00:00Z")

    resp = client.patch(
        f"/appointments/{appointment['id']}", json={"duration_minutes": 90}
    )

    assert resp.status_code == 409
    assert appointment_repo.get(appointment["id"]).duration_minutes == 60


def test_cancelling_skips_the_check(client: TestClient):
    appointment = _create_appointment(client, "2026-03-01T10:00:00Z")
    client.post(
        "/blocks",
        json={
            "store_id": STORE_ID,
            "staff_id": STAFF_ID,
            "start_at": "2026-03-01T10:00:00Z",
            "end_at": "2026-03-01T12:00:00Z",
        },
    )

    resp = client.patch(f"/appointments/{appointment['id']}", json={"status": "cancelled"})

    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"


def test_block_requires_a_subject(client: TestClient):
    resp = client.post(
        "/blocks",
        json={
            "store_id": STORE_ID,
            "start_at": "2026-03-01T10:00:00Z",
            "end_at": "2026-03-01T12:00:00Z",
        },
    )

    assert resp.status_code == 422


def test_delete_block(client: TestClient):
    resp = client.post(
        "/blocks",
        json={
            "store_id": STORE_ID,
            "staff_id": STAFF_ID,
            "start_at": "2026-03-01T10:00:00Z",
            "end_at": "2026-03-01T12:00:00Z",
        },
    )
    block_id = resp.json()["id"]

    assert client.delete(f"/blocks/{block_id}").status_code == 200
    assert client.delete(f"/blocks/{block_id}").status_code == 404


# ---------------------------------------------------------------------------
# Flows and conversations
# ---------------------------------------------------------------------------


def _flow_payload(**overrides) -> dict:
    payload = {
        "store_id": STORE_ID,
        "name": "Цаг захиалга",
        "status": "active",
        "trigger_type": "keyword",
        "trigger_config": {"keywords": ["цаг"]},
        "nodes": [
            {"id": "t", "type": "trigger", "data": {"label": "Эхлэл", "config": {}}},
            {
                "id": "ask",
                "type": "ask_question",
                "data": {"label": "Нэр", "config": {"question_text": "Таны нэр?", "variable_name": "name"}},
            },
            {"id": "end", "type": "end", "data": {"label": "Төгсгөл", "config": {"message": "Баярлалаа, {{name}}"}}},
        ],
        "edges": [
            {"id": "e1", "source": "t", "target": "ask"},
            {"id": "e2", "source": "ask", "target": "end"},
        ],
    }
    payload.update(overrides)
    return payload


def test_create_and_fetch_flow(client: TestClient):
    resp = client.post("/flows", json=_flow_payload())

    assert resp.status_code == 201, resp.text
    flow_id = resp.json()["id"]
    fetched = client.get(f"/flows/{flow_id}").json()
    assert fetched["nodes"][1]["data"]["config"]["type"] == "ask_question"


def test_invalid_flow_graph_is_rejected(client: TestClient):
    payload = _flow_payload(edges=[{"id": "e1", "source": "t", "target": "nowhere"}])

    resp = client.post("/flows", json=payload)

    assert resp.status_code == 400
    assert any("nowhere" in problem for problem in resp.json()["detail"])


def test_default_config_endpoint(client: TestClient):
    resp = client.get("/node-types/delay/default-config")

    assert resp.json() == {
        "type": "delay",
        "label": "Хүлээх",
        "config": {"type": "delay", "seconds": 2, "typing_indicator": True},
    }
    assert client.get("/node-types/carousel/default-config").json()["config"] == {}


def test_conversation_runs_flow(client: TestClient):
    client.post("/flows", json=_flow_payload())

    resp = client.post("/conversations/conv_1/messages", json={"store_id": STORE_ID, "text": "цаг авъя"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["handled"] is True
    assert data["waiting_for_input"] is True
    assert data["messages"][0]["text"] == "Таны нэр?"

    data = client.post(
        "/conversations/conv_1/messages", json={"store_id": STORE_ID, "text": "Бат"}
    ).json()

    assert data["completed"] is True
    assert data["waiting_for_input"] is False
    assert data["messages"][0]["text"] == "Баярлалаа, Бат"


def test_unmatched_message_is_not_handled(client: TestClient):
    client.post("/flows", json=_flow_payload())

    data = client.post(
        "/conversations/conv_1/messages", json={"store_id": STORE_ID, "text": "сайн уу"}
    ).json()

    assert data == {"handled": False, "messages": [], "completed": False, "waiting_for_input": False}


def test_cancel_conversation_flow(client: TestClient):
    client.post("/flows", json=_flow_payload())
    client.post("/conversations/conv_1/messages", json={"store_id": STORE_ID, "text": "цаг"})

    assert client.post("/conversations/conv_1/cancel").json() == {"cancelled": True}
    assert client.post("/conversations/conv_1/cancel").json() == {"cancelled": False}


def test_offset_less_timestamps_are_read_as_utc(client: TestClient):
    existing = _create_appointment(client, "2026-03-01T10:00:00Z")

    resp = client.post(
        "/conflicts/check",
        json={
            "storeId": STORE_ID,
            "staffId": STAFF_ID,
            "startAt": "2026-03-01T10:30:00",
            "endAt": "2026-03-01T11:30:00",
        },
    )

    assert resp.status_code == 200
    data = resp.json()
    assert [c["id"] for c in data["conflicts"]] == [existing["id"]]


def test_offset_less_booking_is_checked_against_stored_ones(client: TestClient):
    _create_appointment(client, "2026-03-01T10:00:00")

    resp = client.post(
        "/appointments",
        json={
            "store_id": STORE_ID,
            "staff_id": STAFF_ID,
            "scheduled_at": "2026-03-01T10:30:00+00:00",
        },
    )

    assert resp.status_code == 409


@pytest.mark.parametrize("field", ["scheduled_at", "status"])
def test_update_cannot_null_required_fields(client: TestClient, field: str):
    appointment = _create_appointment(client, "2026-03-01T10:00:00Z")

    resp = client.patch(f"/appointments/{appointment['id']}", json={field: None})

    assert resp.status_code == 422
    stored = appointment_repo.get(appointment["id"])
    assert stored.scheduled_at is not None
    assert stored.status == "confirmed"
