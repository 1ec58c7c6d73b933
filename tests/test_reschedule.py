from datetime import time, timedelta

import pytest

from app.exceptions import (
    IllegalTransitionError,
    NoChangeError,
    NoWorkingHoursError,
    NotFoundError,
    PastDateError,
    ValidationError,
)
from app.models import AppointmentStatus, EntryState
from app.services.events import AppointmentRescheduled, AppointmentStatusChanged

from conftest import DOCTOR_ID, NEXT_MONDAY, NEXT_TUESDAY, NEXT_WEDNESDAY, TODAY


class TestReschedule:
    def test_move_to_another_day(self, services, book, events):
        book(patient_id="patient-2")
        result = book()
        assert result.queue_number == "2"

        moved = services.reschedule.reschedule(result.appointment_id, NEXT_WEDNESDAY, actor_id="patient-1")
        assert moved.old_queue_number == "2"
        assert moved.new_queue_number == "1"
        assert moved.appointment_date == NEXT_WEDNESDAY
        assert services.lifecycle.get(result.appointment_id).version == 2

        old_entries = services.ledger.entries(DOCTOR_ID, NEXT_MONDAY)
        assert [(e.queue_number, e.state) for e in old_entries] == [
            ("1", EntryState.WAITING),
            ("2", EntryState.MOVED),
        ]
        # Numbers are never reused on the old day
        assert book(patient_id="patient-3").queue_number == "3"

        event = [e for e in events if isinstance(e, AppointmentRescheduled)][0]
        assert (event.old_date, event.new_date) == (NEXT_MONDAY, NEXT_WEDNESDAY)
        assert (event.old_queue_number, event.new_queue_number) == ("2", "1")

    def test_emergency_stays_in_emergency_lane(self, services, book):
        result = book(is_emergency=True)
        moved = services.reschedule.reschedule(result.appointment_id, NEXT_WEDNESDAY)
        assert moved.new_queue_number == "E1"

    def test_same_day_new_time_keeps_number(self, services, book):
        result = book(appointment_time="09:30")
        moved = services.reschedule.reschedule(result.appointment_id, NEXT_MONDAY, "14:00")
        assert moved.new_queue_number == result.queue_number
        assert moved.appointment_time == time(14)
        assert len(services.ledger.entries(DOCTOR_ID, NEXT_MONDAY)) == 1

    def test_no_change(self, services, book):
        result = book(appointment_time="09:30")
        with pytest.raises(NoChangeError):
            services.reschedule.reschedule(result.appointment_id, NEXT_MONDAY)
        with pytest.raises(NoChangeError):
            services.reschedule.reschedule(result.appointment_id, NEXT_MONDAY, "09:30")

    @pytest.mark.parametrize("offset", [0, -3])
    def test_new_date_must_be_in_the_future(self, services, book, offset):
        result = book()
        with pytest.raises(PastDateError):
            services.reschedule.reschedule(result.appointment_id, TODAY + timedelta(days=offset))

    def test_target_day_must_be_a_working_day(self, services, book):
        result = book()
        with pytest.raises(NoWorkingHoursError):
            services.reschedule.reschedule(result.appointment_id, NEXT_TUESDAY)
        appointment = services.lifecycle.get(result.appointment_id)
        assert appointment.appointment_date == NEXT_MONDAY
        assert services.ledger.entries(DOCTOR_ID, NEXT_TUESDAY) == []

    def test_time_outside_new_window(self, services, book):
        result = book()
        with pytest.raises(ValidationError):
            services.reschedule.reschedule(result.appointment_id, NEXT_WEDNESDAY, "15:00")

    def test_confirmed_goes_back_to_scheduled(self, services, book, events):
        result = book()
        services.lifecycle.transition(result.appointment_id, AppointmentStatus.CONFIRMED)
        moved = services.reschedule.reschedule(result.appointment_id, NEXT_WEDNESDAY)
        assert moved.status == AppointmentStatus.SCHEDULED

        history = services.lifecycle.history(result.appointment_id)
        assert history[-1].event == "rescheduled"
        assert (history[-1].from_status, history[-1].to_status) == ("confirmed", "scheduled")

        changed = [e for e in events if isinstance(e, AppointmentStatusChanged)]
        assert [(e.from_status, e.to_status) for e in changed] == [
            ("scheduled", "confirmed"),
            ("confirmed", "scheduled"),
        ]

    @pytest.mark.parametrize("status", [AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW])
    def test_closed_appointment_cannot_move(self, services, book, status):
        result = book()
        services.lifecycle.transition(result.appointment_id, status)
        with pytest.raises(IllegalTransitionError):
            services.reschedule.reschedule(result.appointment_id, NEXT_WEDNESDAY)

    def test_unknown_appointment(self, services, doctor):
        with pytest.raises(NotFoundError):
            services.reschedule.reschedule(404, NEXT_WEDNESDAY)

    def test_scheduled_move_publishes_no_status_change(self, services, book, events):
        result = book()
        services.reschedule.reschedule(result.appointment_id, NEXT_WEDNESDAY)
        assert not [e for e in events if isinstance(e, AppointmentStatusChanged)]

    def test_result_serializes_for_the_api(self, services, book):
        result = book()
        moved = services.reschedule.reschedule(result.appointment_id, NEXT_WEDNESDAY, "10:00")
        assert moved.model_dump(mode="json") == {
            "appointment_id": result.appointment_id,
            "status": "scheduled",
            "appointment_date": NEXT_WEDNESDAY.isoformat(),
            "appointment_time": "10:00:00",
            "old_queue_number": "1",
            "new_queue_number": "1",
        }


class TestCancel:
    def test_cancel_records_reason(self, services, book):
        result = book()
        appointment = services.reschedule.cancel(result.appointment_id, "Schedule conflict", actor_id="patient-1")
        assert appointment.status == AppointmentStatus.CANCELLED
        assert appointment.cancellation_reason == "Schedule conflict"
        assert services.ledger.entries(DOCTOR_ID, NEXT_MONDAY)[0].state == EntryState.CANCELLED

    def test_completed_cannot_be_cancelled(self, services, book):
        result = book()
        services.lifecycle.start_consultation(result.appointment_id)
        services.lifecycle.transition(result.appointment_id, AppointmentStatus.COMPLETED)
        with pytest.raises(IllegalTransitionError):
            services.reschedule.cancel(result.appointment_id, "Too late")
        assert services.lifecycle.get(result.appointment_id).status == AppointmentStatus.COMPLETED

    def test_cancel_twice(self, services, book):
        result = book()
        services.reschedule.cancel(result.appointment_id)
        with pytest.raises(IllegalTransitionError):
            services.reschedule.cancel(result.appointment_id)
