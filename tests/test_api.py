from datetime import timedelta

from conftest import (
    ADMIN,
    DOCTOR,
    DOCTOR_ID,
    NEXT_MONDAY,
    NEXT_TUESDAY,
    NEXT_WEDNESDAY,
    OTHER_DOCTOR,
    OTHER_PATIENT,
    PATIENT,
    TODAY,
)


def _book(client, day=NEXT_MONDAY, headers=PATIENT, **extra):
    body = {
        "doctor_id": DOCTOR_ID,
        "appointment_date": day.isoformat(),
        "reason_for_visit": "Persistent cough",
    }
    body.update(extra)
    return client.post("/api/patients/appointments/queue", json=body, headers=headers)


def _booked_id(client, **kwargs):
    response = _book(client, **kwargs)
    assert response.status_code == 201, response.text
    return response.json()["data"]["appointment_id"]


class TestBookingEndpoint:
    def test_book_returns_queue_number(self, client, doctor):
        response = _book(client)
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        assert body["data"]["queue_number"] == "1"
        assert body["data"]["status"] == "scheduled"
        assert body["data"]["doctor_id"] == DOCTOR_ID

    def test_emergency_lane(self, client, doctor):
        _book(client)
        response = _book(client, headers=OTHER_PATIENT, is_emergency=True, priority="urgent")
        assert response.json()["data"]["queue_number"] == "E1"

    def test_missing_reason(self, client, doctor):
        response = _book(client, reason_for_visit=None)
        assert response.status_code == 400
        assert response.json() == {
            "status": "error",
            "error": "validation_error",
            "message": "Please provide a reason for your visit",
        }

    def test_past_date(self, client, doctor):
        response = _book(client, day=TODAY - timedelta(days=1))
        assert response.status_code == 400
        assert response.json()["error"] == "past_date"

    def test_too_far_ahead(self, client, doctor):
        response = _book(client, day=TODAY + timedelta(days=91))
        assert response.status_code == 400
        assert response.json()["error"] == "too_far_ahead"

    def test_day_off(self, client, doctor):
        response = _book(client, day=NEXT_TUESDAY)
        assert response.status_code == 409
        assert response.json()["error"] == "no_working_hours"

    def test_unknown_doctor(self, client, doctor):
        response = _book(client, doctor_id="dr-nobody")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_requires_identity(self, client, doctor):
        response = _book(client, headers={})
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_doctor_cannot_use_patient_booking(self, client, doctor):
        assert _book(client, headers=DOCTOR).status_code == 403

    def test_idempotency_key_header(self, client, doctor):
        first = _book(client, headers={**PATIENT, "Idempotency-Key": "tap-1"})
        again = _book(client, headers={**PATIENT, "Idempotency-Key": "tap-1"})
        assert again.status_code == 201
        assert again.json()["data"]["appointment_id"] == first.json()["data"]["appointment_id"]
        assert again.json()["data"]["replayed"] is True

    def test_front_desk_books_for_patient(self, client, doctor):
        body = {
            "patient_id": "walk-in-7",
            "doctor_id": DOCTOR_ID,
            "appointment_date": NEXT_MONDAY.isoformat(),
            "reason_for_visit": "Fever",
        }
        response = client.post("/api/admin/appointments/queue", json=body, headers=ADMIN)
        assert response.status_code == 201
        assert response.json()["data"]["queue_number"] == "1"
        assert client.post("/api/admin/appointments/queue", json=body, headers=PATIENT).status_code == 403


class TestAvailableSlots:
    def test_open_day(self, client, doctor):
        response = client.get(
            "/api/appointments/available-slots",
            params={"doctor_id": DOCTOR_ID, "date": NEXT_WEDNESDAY.isoformat()},
            headers=PATIENT,
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["is_open"] is True
        assert data["working_window"] == {"start": "09:00", "end": "13:00"}

    def test_closed_day(self, client, doctor):
        response = client.get(
            "/api/appointments/available-slots",
            params={"doctor_id": DOCTOR_ID, "date": NEXT_TUESDAY.isoformat()},
            headers=PATIENT,
        )
        assert response.json()["data"]["is_open"] is False


class TestAppointmentEndpoints:
    def test_list_is_scoped_to_caller(self, client, doctor):
        _book(client)
        _book(client, headers=OTHER_PATIENT)

        mine = client.get("/api/appointments", headers=PATIENT).json()["data"]
        assert [a["patient_id"] for a in mine] == ["patient-1"]
        assert len(client.get("/api/appointments", headers=DOCTOR).json()["data"]) == 2
        assert client.get("/api/appointments", headers=OTHER_DOCTOR).json()["data"] == []

    def test_get_includes_history(self, client, doctor):
        appointment_id = _booked_id(client)
        response = client.get(f"/api/appointments/{appointment_id}", headers=PATIENT)
        assert response.status_code == 200
        assert [h["event"] for h in response.json()["data"]["history"]] == ["booked"]

    def test_other_patient_cannot_view(self, client, doctor):
        appointment_id = _booked_id(client)
        assert client.get(f"/api/appointments/{appointment_id}", headers=OTHER_PATIENT).status_code == 403

    def test_missing_appointment(self, client, doctor):
        response = client.get("/api/appointments/999", headers=ADMIN)
        assert response.status_code == 404

    def test_doctor_updates_status(self, client, doctor):
        appointment_id = _booked_id(client)
        response = client.patch(
            f"/api/appointments/{appointment_id}/status", json={"status": "confirmed"}, headers=DOCTOR
        )
        assert response.status_code == 200
        assert response.json()["data"] == {"id": appointment_id, "status": "confirmed"}

    def test_illegal_status_change(self, client, doctor):
        appointment_id = _booked_id(client)
        response = client.patch(
            f"/api/appointments/{appointment_id}/status", json={"status": "completed"}, headers=DOCTOR
        )
        assert response.status_code == 409
        assert response.json()["error"] == "illegal_transition"

    def test_patient_cannot_confirm(self, client, doctor):
        appointment_id = _booked_id(client)
        response = client.patch(
            f"/api/appointments/{appointment_id}/status", json={"status": "confirmed"}, headers=PATIENT
        )
        assert response.status_code == 403

    def test_other_doctor_cannot_change(self, client, doctor):
        appointment_id = _booked_id(client)
        response = client.patch(
            f"/api/appointments/{appointment_id}/status", json={"status": "confirmed"}, headers=OTHER_DOCTOR
        )
        assert response.status_code == 403

    def test_doctor_action(self, client, doctor):
        appointment_id = _booked_id(client)
        response = client.patch(
            f"/api/doctors/appointments/{appointment_id}/action", json={"action": "accept"}, headers=DOCTOR
        )
        assert response.json()["data"]["status"] == "confirmed"

    def test_reschedule(self, client, doctor):
        appointment_id = _booked_id(client)
        response = client.put(
            f"/api/appointments/{appointment_id}/reschedule",
            json={"appointment_date": NEXT_WEDNESDAY.isoformat(), "appointment_time": "10:00"},
            headers=PATIENT,
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["appointment_date"] == NEXT_WEDNESDAY.isoformat()
        assert data["new_queue_number"] == "1"

    def test_reschedule_without_change(self, client, doctor):
        appointment_id = _booked_id(client)
        response = client.put(
            f"/api/appointments/{appointment_id}/reschedule",
            json={"appointment_date": NEXT_MONDAY.isoformat()},
            headers=PATIENT,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "no_change"

    def test_cancel(self, client, doctor):
        appointment_id = _booked_id(client)
        response = client.put(
            f"/api/appointments/{appointment_id}/cancel",
            json={"cancellation_reason": "Feeling better"},
            headers=PATIENT,
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"

        again = client.put(f"/api/appointments/{appointment_id}/cancel", json={}, headers=PATIENT)
        assert again.status_code == 409


class TestQueueEndpoints:
    def test_doctor_runs_todays_queue(self, client, doctor):
        _book(client, day=TODAY)
        emergency_id = _booked_id(client, day=TODAY, headers=OTHER_PATIENT, is_emergency=True)

        status = client.get("/api/doctor/queue/status", headers=DOCTOR).json()["data"]
        assert status["next_number"] == "E1"
        assert status["waiting_count"] == 2

        called = client.post("/api/doctor/queue/call-next", headers=DOCTOR).json()["data"]
        assert called["id"] == emergency_id
        assert called["status"] == "in-progress"

        today = client.get("/api/doctor/appointments/today", headers=DOCTOR).json()["data"]
        assert [a["queue_number"] for a in today] == ["1", "E1"]

        done = client.put(f"/api/doctor/appointments/{emergency_id}/complete", headers=DOCTOR)
        assert done.json()["data"]["status"] == "completed"
        status = client.get("/api/doctor/queue/status", headers=DOCTOR).json()["data"]
        assert status["serving_number"] == "1"
        assert status["current_emergency_number"] == "E1"

    def test_patient_position(self, client, doctor):
        _book(client, headers=OTHER_PATIENT)
        appointment_id = _booked_id(client)
        response = client.get(f"/api/patient/queue/position/{appointment_id}", headers=PATIENT)
        data = response.json()["data"]
        assert data["queue_number"] == "2"
        assert data["patients_ahead"] == 1

        mine = client.get("/api/patient/queue/position", headers=PATIENT).json()["data"]["appointments"]
        assert [p["appointment_id"] for p in mine] == [appointment_id]

    def test_toggle_queue(self, client, doctor):
        response = client.put(
            "/api/doctor/queue/toggle",
            json={"is_active": False, "queue_date": NEXT_MONDAY.isoformat()},
            headers=DOCTOR,
        )
        assert response.json()["data"]["is_active"] is False
        assert _book(client).status_code == 409

    def test_public_queue_info(self, client, doctor):
        _book(client)
        response = client.get(
            f"/api/patient/queue/doctor/{DOCTOR_ID}",
            params={"queue_date": NEXT_MONDAY.isoformat()},
            headers=OTHER_PATIENT,
        )
        data = response.json()["data"]
        assert data["waiting_count"] == 1
        assert "regular_count" not in data

    def test_staff_must_name_the_doctor(self, client, doctor):
        assert client.get("/api/doctor/queue/status", headers=ADMIN).status_code == 400
        response = client.get("/api/doctor/queue/status", params={"doctor_id": DOCTOR_ID}, headers=ADMIN)
        assert response.status_code == 200


class TestDoctorAvailability:
    def test_go_offline(self, client, doctor):
        response = client.put("/api/doctor/availability/status", json={"status": "offline"}, headers=DOCTOR)
        assert response.status_code == 200
        booked = _book(client)
        assert booked.status_code == 409
        assert booked.json()["error"] == "doctor_unavailable"

    def test_update_working_hours(self, client, doctor):
        response = client.put(
            "/api/doctor/availability/working-hours",
            json={"working_hours": {"tuesday": "08:00-12:00"}},
            headers=DOCTOR,
        )
        assert response.status_code == 200
        assert _book(client, day=NEXT_TUESDAY).status_code == 201
        assert _book(client, day=NEXT_MONDAY).json()["error"] == "no_working_hours"

    def test_patient_cannot_edit_hours(self, client, doctor):
        response = client.put("/api/doctor/availability/status", json={"status": "busy"}, headers=PATIENT)
        assert response.status_code == 403


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
