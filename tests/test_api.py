from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from setup_sheet.api import app
from setup_sheet.database import AuditLog
from setup_sheet.schedule import WEEKDAYS

TEMPLATES = "/api/setup-sheet-templates"
SETUPS = "/api/weekly-setups"


def _week(**days) -> dict:
    week = {day: {"timeBlocks": []} for day in WEEKDAYS}
    for day, blocks in days.items():
        week[day] = {"timeBlocks": blocks}
    return week


def _block(block_id: str, start: str, end: str, **position) -> dict:
    return {
        "id": block_id,
        "start": start,
        "end": end,
        "positions": [{"id": "p1", "name": "Register", "section": "FOH", "count": 1, **position}],
    }


def _setup_payload(**overrides) -> dict:
    payload = {
        "name": "Week 16",
        "startDate": "2025-04-14",
        "endDate": "2025-04-20",
        "weekSchedule": _week(monday=[_block("b1", "09:00", "13:00")]),
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def client(memory_db):
    api = TestClient(app)
    api.headers.update({"Authorization": "Bearer test-token"})
    return api


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_template_crud(client, memory_db) -> None:
    created = client.post(TEMPLATES, json={"name": "Weekday", "weekSchedule": _week(monday=[_block("b1", "9a", "1p")])})
    assert created.status_code == 201
    body = created.json()
    assert body["name"] == "Weekday"
    assert body["version"] == 1
    assert isinstance(body["id"], str)
    assert set(body["weekSchedule"]) == set(WEEKDAYS)
    assert body["weekSchedule"]["monday"]["timeBlocks"][0]["start"] == "09:00"

    listed = client.get(TEMPLATES).json()
    assert [item["id"] for item in listed] == [body["id"]]
    assert client.get(f"{TEMPLATES}/{body['id']}").json()["name"] == "Weekday"

    deleted = client.delete(f"{TEMPLATES}/{body['id']}")
    assert deleted.status_code == 200
    assert deleted.content == b""
    assert client.get(f"{TEMPLATES}/{body['id']}").status_code == 404

    with memory_db() as session:
        actions = [log.action for log in session.query(AuditLog).order_by(AuditLog.id)]
    assert actions == ["TEMPLATE_CREATE", "TEMPLATE_DELETE"]


def test_template_strips_occupants(client) -> None:
    week = _week(monday=[_block("b1", "09:00", "13:00", employeeId="e1", employeeName="Ana")])
    body = client.post(TEMPLATES, json={"name": "Weekday", "weekSchedule": week}).json()
    position = body["weekSchedule"]["monday"]["timeBlocks"][0]["positions"][0]
    assert "employeeId" not in position


def test_template_requires_all_weekdays(client) -> None:
    week = _week()
    del week["sunday"]
    response = client.post(TEMPLATES, json={"name": "Weekday", "weekSchedule": week})
    assert response.status_code == 400
    assert "sunday" in response.json()["message"]


def test_template_rejects_inverted_block(client) -> None:
    week = _week(monday=[_block("b1", "13:00", "09:00")])
    response = client.post(TEMPLATES, json={"name": "Weekday", "weekSchedule": week})
    assert response.status_code == 400


def test_duplicate_template_name(client) -> None:
    client.post(TEMPLATES, json={"name": "Weekday", "weekSchedule": _week()})
    response = client.post(TEMPLATES, json={"name": "Weekday", "weekSchedule": _week()})
    assert response.status_code == 400
    assert response.json()["code"] == "DUPLICATE_TEMPLATE_NAME"


def test_template_update_merges_days(client) -> None:
    week = _week(monday=[_block("b1", "09:00", "13:00")], tuesday=[_block("t1", "10:00", "14:00")])
    template_id = client.post(TEMPLATES, json={"name": "Weekday", "weekSchedule": week}).json()["id"]

    response = client.put(
        f"{TEMPLATES}/{template_id}",
        json={"weekSchedule": {"monday": {"timeBlocks": [_block("b9", "15:00", "19:00")]}}, "version": 1},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["version"] == 2
    assert body["weekSchedule"]["monday"]["timeBlocks"][0]["id"] == "b9"
    assert body["weekSchedule"]["tuesday"]["timeBlocks"][0]["id"] == "t1"


def test_stale_version_is_rejected(client) -> None:
    template_id = client.post(TEMPLATES, json={"name": "Weekday", "weekSchedule": _week()}).json()["id"]
    assert client.put(f"{TEMPLATES}/{template_id}", json={"name": "Weekend", "version": 1}).status_code == 200

    stale = client.put(f"{TEMPLATES}/{template_id}", json={"name": "Holiday", "version": 1})
    assert stale.status_code == 409
    assert client.get(f"{TEMPLATES}/{template_id}").json()["name"] == "Weekend"

    # No version means last write wins.
    assert client.put(f"{TEMPLATES}/{template_id}", json={"name": "Holiday"}).status_code == 200


def test_unknown_and_malformed_ids(client) -> None:
    missing = client.get(f"{TEMPLATES}/999")
    assert missing.status_code == 404
    assert missing.json() == {"message": "Template not found"}
    assert client.get(f"{SETUPS}/abc").json() == {"message": "Invalid ID format"}
    assert client.delete(f"{SETUPS}/999").status_code == 404


def test_non_object_body_is_rejected(client) -> None:
    response = client.post(TEMPLATES, json=[1, 2, 3])
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid data format"


def test_authentication_is_required(client, monkeypatch) -> None:
    anonymous = client.get(TEMPLATES, headers={"Authorization": ""})
    assert anonymous.status_code == 401
    assert anonymous.json() == {"message": "Authentication required"}

    monkeypatch.setenv("SETUP_SHEET_API_TOKENS", "alpha, beta")
    assert client.get(TEMPLATES).status_code == 401
    assert client.get(TEMPLATES, headers={"Authorization": "Bearer beta"}).status_code == 200


def test_weekly_setup_crud(client) -> None:
    uploaded = [{"id": 5, "name": "Ana", "timeBlock": "9-5", "area": "FOH", "day": "monday", "extra": "dropped"}]
    created = client.post(SETUPS, json=_setup_payload(uploadedSchedules=uploaded, isShared="yes"))
    assert created.status_code == 201
    body = created.json()
    assert body["startDate"] == "2025-04-14"
    assert body["endDate"] == "2025-04-20"
    assert body["isShared"] is False
    assert body["version"] == 1
    assert body["uploadedSchedules"] == [
        {
            "id": "5",
            "name": "Ana",
            "timeBlock": "9-5",
            "area": "FOH",
            "day": "monday",
            "breaks": [],
            "hadBreak": False,
            "breakDate": None,
        }
    ]

    updated = client.put(f"{SETUPS}/{body['id']}", json={"isShared": True, "version": 1}).json()
    assert updated["isShared"] is True
    assert updated["version"] == 2
    assert updated["weekSchedule"]["monday"]["timeBlocks"][0]["id"] == "b1"

    assert [item["id"] for item in client.get(SETUPS).json()] == [body["id"]]
    assert client.delete(f"{SETUPS}/{body['id']}").status_code == 200
    assert client.get(f"{SETUPS}/{body['id']}").json() == {"message": "Weekly setup not found"}


def test_weekly_setup_requires_fields(client) -> None:
    payload = _setup_payload()
    del payload["endDate"]
    response = client.post(SETUPS, json=payload)
    assert response.status_code == 400
    assert response.json()["message"] == "Missing required fields"


def test_weekly_setup_rejects_bad_range(client) -> None:
    response = client.post(SETUPS, json=_setup_payload(endDate="2025-04-19"))
    assert response.status_code == 400
    assert "7 days" in response.json()["message"]

    setup_id = client.post(SETUPS, json=_setup_payload()).json()["id"]
    moved = client.put(f"{SETUPS}/{setup_id}", json={"startDate": "2025-04-21"})
    assert moved.status_code == 400
    shifted = client.put(f"{SETUPS}/{setup_id}", json={"startDate": "2025-04-21", "endDate": "2025-04-27"})
    assert shifted.json()["endDate"] == "2025-04-27"


def test_duplicate_setup_name(client) -> None:
    client.post(SETUPS, json=_setup_payload())
    response = client.post(SETUPS, json=_setup_payload(startDate="2025-04-21", endDate="2025-04-27"))
    assert response.status_code == 400
    assert response.json()["code"] == "DUPLICATE_SETUP_NAME"


def test_oversized_weekly_setup_is_rejected(client) -> None:
    chunk = "x" * (1024 * 1024)
    uploaded = [{"id": str(index), "name": chunk} for index in range(16)]
    response = client.post(SETUPS, json=_setup_payload(uploadedSchedules=uploaded))
    assert response.status_code == 413
    assert response.json()["error"] == "PAYLOAD_TOO_LARGE"
    assert client.get(SETUPS).json() == []
