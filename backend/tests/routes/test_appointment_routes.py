# backend/tests/routes/test_appointment_routes.py
"""
HTTP tests for /api/v1/appointments.
"""

from datetime import timedelta

import pytest

from tests._utils import STUDENT_ID, TUTOR_ID, actor_headers, at


@pytest.fixture
def booking_body(lesson_day):
    start = at(lesson_day, 10)
    return {
        "tutor_id": TUTOR_ID,
        "subject": "Math",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=1)).isoformat(),
    }


@pytest.fixture
def booked(client, student_headers, booking_body):
    response = client.post("/api/v1/appointments", json=booking_body, headers=student_headers)
    assert response.status_code == 201
    return response.json()


class TestBooking:
    def test_create_returns_201(self, booked):
        assert booked["status"] == "SCHEDULED"
        assert booked["student_id"] == STUDENT_ID
        assert booked["tutor_id"] == TUTOR_ID
        assert booked["duplicate"] is False
        assert booked["total_cost"] == 50.0
        assert booked["hourly_rate"] == 50.0
        assert booked["currency"] == "USD"

    def test_duplicate_returns_200_with_same_appointment(
        self, client, student_headers, booking_body, booked
    ):
        response = client.post("/api/v1/appointments", json=booking_body, headers=student_headers)
        assert response.status_code == 200
        assert response.json()["id"] == booked["id"]
        assert response.json()["duplicate"] is True

    def test_idempotency_key_header(self, client, student_headers, booking_body):
        headers = {**student_headers, "Idempotency-Key": "click-1"}
        first = client.post("/api/v1/appointments", json=booking_body, headers=headers)
        second = client.post("/api/v1/appointments", json=booking_body, headers=headers)
        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]

    def test_overlap_returns_409(self, client, other_student_headers, booking_body, booked):
        response = client.post(
            "/api/v1/appointments", json=booking_body, headers=other_student_headers
        )
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "SLOT_UNAVAILABLE"
        assert body["status"] == 409
        assert body["title"] == "Conflict"

    def test_missing_identity_returns_401(self, client, booking_body):
        response = client.post("/api/v1/appointments", json=booking_body)
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_unknown_role_returns_401(self, client, booking_body):
        response = client.post(
            "/api/v1/appointments",
            json=booking_body,
            headers=actor_headers(STUDENT_ID, "parent"),
        )
        assert response.status_code == 401

    def test_bad_interval_returns_400(self, client, student_headers, booking_body):
        booking_body["end_time"] = booking_body["start_time"]
        response = client.post("/api/v1/appointments", json=booking_body, headers=student_headers)
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_FAILED"

    def test_unknown_field_returns_422(self, client, student_headers, booking_body):
        booking_body["price"] = 1
        response = client.post("/api/v1/appointments", json=booking_body, headers=student_headers)
        assert response.status_code == 422
        assert response.json()["errors"]

    def test_booking_for_someone_else_returns_403(self, client, student_headers, booking_body):
        booking_body["student_id"] = "student-9"
        response = client.post("/api/v1/appointments", json=booking_body, headers=student_headers)
        assert response.status_code == 403


class TestReads:
    def test_get_by_party(self, client, student_headers, tutor_headers, booked):
        for headers in (student_headers, tutor_headers):
            response = client.get(f"/api/v1/appointments/{booked['id']}", headers=headers)
            assert response.status_code == 200
            assert response.json()["id"] == booked["id"]

    def test_get_by_outsider_is_403(self, client, other_student_headers, booked):
        response = client.get(f"/api/v1/appointments/{booked['id']}", headers=other_student_headers)
        assert response.status_code == 403

    def test_malformed_id_is_422(self, client, student_headers):
        response = client.get("/api/v1/appointments/not-a-ulid", headers=student_headers)
        assert response.status_code == 422

    def test_missing_is_404(self, client, student_headers):
        response = client.get(
            "/api/v1/appointments/01JZZZZZZZZZZZZZZZZZZZZZZZ", headers=student_headers
        )
        assert response.status_code == 404

    def test_list(self, client, student_headers, other_student_headers, booked):
        mine = client.get("/api/v1/appointments", headers=student_headers).json()
        assert mine["total"] == 1
        assert mine["appointments"][0]["id"] == booked["id"]

        theirs = client.get("/api/v1/appointments", headers=other_student_headers).json()
        assert theirs["total"] == 0

    def test_list_filter_by_status(self, client, tutor_headers, booked):
        response = client.get(
            "/api/v1/appointments", params={"status": "CANCELLED"}, headers=tutor_headers
        )
        assert response.status_code == 200
        assert response.json()["total"] == 0


class TestLifecycle:
    def test_confirm_start_complete(self, client, tutor_headers, booked, lesson_day):
        base = f"/api/v1/appointments/{booked['id']}"

        assert client.post(f"{base}/confirm", headers=tutor_headers).json()["status"] == "CONFIRMED"
        started = client.post(
            f"{base}/start",
            json={"actual_start_time": at(lesson_day, 10).isoformat()},
            headers=tutor_headers,
        )
        assert started.json()["status"] == "IN_PROGRESS"

        completed = client.post(
            f"{base}/complete",
            json={"actual_end_time": at(lesson_day, 11, 30).isoformat(), "notes": "good session"},
            headers=tutor_headers,
        )
        assert completed.status_code == 200
        body = completed.json()
        assert body["appointment"]["status"] == "COMPLETED"
        assert body["hours_recorded"] == 1.5
        assert body["unpaid_hours"] == 1.5
        assert body["reminder_sent"] is False
        assert body["ledger_id"]

    def test_complete_twice_is_409(self, client, tutor_headers, booked):
        url = f"/api/v1/appointments/{booked['id']}/complete"
        assert client.post(url, headers=tutor_headers).status_code == 200

        response = client.post(url, headers=tutor_headers)
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

    def test_student_cannot_complete(self, client, student_headers, booked):
        response = client.post(
            f"/api/v1/appointments/{booked['id']}/complete", headers=student_headers
        )
        assert response.status_code == 403

    def test_student_cancels_and_slot_frees_up(
        self, client, student_headers, other_student_headers, booking_body, booked
    ):
        response = client.post(
            f"/api/v1/appointments/{booked['id']}/cancel",
            json={"reason": "conflict"},
            headers=student_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"
        assert response.json()["cancellation_reason"] == "conflict"

        rebooked = client.post(
            "/api/v1/appointments", json=booking_body, headers=other_student_headers
        )
        assert rebooked.status_code == 201

    def test_no_show(self, client, tutor_headers, booked):
        response = client.post(f"/api/v1/appointments/{booked['id']}/no-show", headers=tutor_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "NO_SHOW"


def test_request_id_is_echoed(client, student_headers):
    response = client.get(
        "/api/v1/appointments", headers={**student_headers, "X-Request-ID": "req-123"}
    )
    assert response.headers["X-Request-ID"] == "req-123"
    assert "X-Process-Time" in response.headers
