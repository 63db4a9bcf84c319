# backend/tests/routes/test_availability_routes.py
"""
HTTP tests for /api/v1/availability.
"""

from datetime import timedelta

from tests._utils import TUTOR_ID

MONDAY = 1


def test_create_and_list_recurring(client, tutor_headers):
    response = client.post(
        "/api/v1/availability/recurring",
        json={"day_of_week": MONDAY, "start_time": "09:00", "end_time": "12:00"},
        headers=tutor_headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["kind"] == "recurring"
    assert body["tutor_id"] == TUTOR_ID

    listed = client.get("/api/v1/availability/recurring", headers=tutor_headers).json()
    assert [r["id"] for r in listed["recurring"]] == [body["id"]]


def test_overlapping_recurring_is_409(client, tutor_headers):
    payload = {"day_of_week": MONDAY, "start_time": "09:00", "end_time": "12:00"}
    client.post("/api/v1/availability/recurring", json=payload, headers=tutor_headers)

    payload = {"day_of_week": MONDAY, "start_time": "11:00", "end_time": "13:00"}
    response = client.post("/api/v1/availability/recurring", json=payload, headers=tutor_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "AVAILABILITY_OVERLAP"


def test_inverted_times_are_400(client, tutor_headers):
    response = client.post(
        "/api/v1/availability/recurring",
        json={"day_of_week": MONDAY, "start_time": "12:00", "end_time": "09:00"},
        headers=tutor_headers,
    )
    assert response.status_code == 400


def test_day_out_of_range_is_422(client, tutor_headers):
    response = client.post(
        "/api/v1/availability/recurring",
        json={"day_of_week": 7, "start_time": "09:00", "end_time": "10:00"},
        headers=tutor_headers,
    )
    assert response.status_code == 422


def test_student_cannot_publish_availability(client, student_headers):
    response = client.post(
        "/api/v1/availability/recurring",
        json={"day_of_week": MONDAY, "start_time": "09:00", "end_time": "10:00"},
        headers=student_headers,
    )
    assert response.status_code == 403


def test_expand_is_idempotent(client, tutor_headers, lesson_day):
    payload = {
        "day_of_week": MONDAY,
        "start_time": "09:00",
        "end_time": "10:00",
        "start_date": lesson_day.isoformat(),
        "weeks": 4,
    }
    first = client.post("/api/v1/availability/expand", json=payload, headers=tutor_headers)
    assert first.status_code == 201
    assert first.json()["status"] == "created"
    assert first.json()["created_count"] == 4
    assert len(first.json()["slots"]) == 4

    second = client.post("/api/v1/availability/expand", json=payload, headers=tutor_headers)
    assert second.status_code == 200
    assert second.json()["status"] == "nothing_to_create"
    assert second.json()["created_count"] == 0


def test_expand_with_no_occurrences(client, tutor_headers, lesson_day):
    payload = {
        "day_of_week": MONDAY,
        "start_time": "09:00",
        "end_time": "10:00",
        "start_date": (lesson_day + timedelta(days=1)).isoformat(),
        "end_date": (lesson_day + timedelta(days=5)).isoformat(),
    }
    response = client.post("/api/v1/availability/expand", json=payload, headers=tutor_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "no_occurrences"


def test_expand_rejects_end_date_with_weeks(client, tutor_headers, lesson_day):
    payload = {
        "day_of_week": MONDAY,
        "start_time": "09:00",
        "end_time": "10:00",
        "start_date": lesson_day.isoformat(),
        "end_date": (lesson_day + timedelta(weeks=2)).isoformat(),
        "weeks": 2,
    }
    response = client.post("/api/v1/availability/expand", json=payload, headers=tutor_headers)
    assert response.status_code == 400


def test_slot_create_list_and_delete(client, tutor_headers, lesson_day):
    created = client.post(
        "/api/v1/availability/slots",
        json={"slot_date": lesson_day.isoformat(), "start_time": "14:00", "end_time": "15:00"},
        headers=tutor_headers,
    )
    assert created.status_code == 201
    slot = created.json()
    assert slot["kind"] == "date_bound"

    listed = client.get(
        "/api/v1/availability/slots",
        params={"start_date": lesson_day.isoformat(), "end_date": lesson_day.isoformat()},
        headers=tutor_headers,
    ).json()
    assert [s["id"] for s in listed["slots"]] == [slot["id"]]

    removed = client.delete(f"/api/v1/availability/date_bound/{slot['id']}", headers=tutor_headers)
    assert removed.status_code == 200
    assert removed.json() == {"kind": "date_bound", "slot_id": slot["id"], "action": "deleted"}


def test_update_recurring_toggle(client, tutor_headers):
    template = client.post(
        "/api/v1/availability/recurring",
        json={"day_of_week": MONDAY, "start_time": "09:00", "end_time": "10:00"},
        headers=tutor_headers,
    ).json()

    response = client.patch(
        f"/api/v1/availability/recurring/{template['id']}",
        json={"is_active": False},
        headers=tutor_headers,
    )
    assert response.status_code == 200
    assert response.json()["is_active"] is False


def test_remove_unknown_kind_is_422(client, tutor_headers):
    response = client.delete("/api/v1/availability/weekly/abc", headers=tutor_headers)
    assert response.status_code == 422
