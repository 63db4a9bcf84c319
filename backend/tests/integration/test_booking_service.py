# backend/tests/integration/test_booking_service.py
"""
Integration tests for BookingService against a real (SQLite) database.

Covers exactly-once booking, conflict rejection, claim release on failure,
the rate snapshot and best-effort notifications.
"""

from datetime import time, timedelta
from decimal import Decimal
import threading
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.enums import AppointmentStatus, NotificationKind
from app.core.exceptions import (
    DuplicateRequestException,
    ForbiddenException,
    NotFoundException,
    SlotUnavailableException,
    ValidationException,
)
from app.database import Base
from app.idempotency.guard import IdempotencyGuard, fingerprint, request_key
from app.idempotency.store import InMemoryIdempotencyStore, RedisIdempotencyStore
from app.models.appointment import Appointment
from app.models.rate import TutorRate
from app.schemas.appointment import AppointmentCreate
from app.services.booking_service import BookingService, hours_between
from app.services.notification_service import NotificationService
from tests._utils import OTHER_STUDENT_ID, OTHER_TUTOR_ID, STUDENT_ID, TUTOR_ID, at


def _derived_key(student_id, subject, start, end):
    return fingerprint(
        request_key("booking", student_id, TUTOR_ID, subject.lower(), start.isoformat(), end.isoformat())
    )


class TestCreateAppointment:
    def test_books_scheduled_appointment_with_default_rate(self, book, notification_service):
        outcome = book(start_hour=10, hours=1)
        appointment = outcome.appointment

        assert outcome.duplicate is False
        assert appointment.status == AppointmentStatus.SCHEDULED.value
        assert appointment.student_id == STUDENT_ID
        assert appointment.tutor_id == TUTOR_ID
        assert appointment.hourly_rate == Decimal("50.00")
        assert appointment.currency == "USD"
        assert appointment.total_cost == Decimal("50.00")
        assert appointment.idempotency_key is not None

        for user_id in (STUDENT_ID, TUTOR_ID):
            kinds = [n.kind for n in notification_service.list_for_user(user_id)]
            assert kinds == [NotificationKind.APPOINTMENT_BOOKED.value]

    def test_identical_request_replays_existing_appointment(self, book, db):
        first = book(start_hour=10)
        second = book(start_hour=10)

        assert second.duplicate is True
        assert second.appointment.id == first.appointment.id
        assert db.query(Appointment).count() == 1

    def test_subject_case_does_not_change_the_derived_key(self, book):
        first = book(subject="Math")
        second = book(subject="MATH")
        assert second.duplicate is True
        assert second.appointment.id == first.appointment.id

    def test_client_key_replays_regardless_of_payload(self, book):
        first = book(start_hour=10, idempotency_key="client-abc")
        second = book(start_hour=14, idempotency_key="client-abc")
        assert second.duplicate is True
        assert second.appointment.id == first.appointment.id

    def test_client_keys_are_scoped_per_student(self, book, other_student):
        book(start_hour=10, idempotency_key="shared")
        other = book(start_hour=12, idempotency_key="shared", actor=other_student)
        assert other.duplicate is False
        assert other.appointment.student_id == OTHER_STUDENT_ID

    def test_in_flight_duplicate_is_rejected(self, book, guard, lesson_day):
        start = at(lesson_day, 10)
        guard.claim(_derived_key(STUDENT_ID, "Math", start, start + timedelta(hours=1)))

        with pytest.raises(DuplicateRequestException):
            book(start_hour=10)

    def test_back_to_back_appointments_are_allowed(self, book, other_student):
        book(start_hour=10)
        second = book(start_hour=11, actor=other_student)
        assert second.duplicate is False

    def test_overlap_is_rejected_and_claim_released(self, book, other_student, guard, lesson_day):
        book(start_hour=10)

        with pytest.raises(SlotUnavailableException) as exc_info:
            book(start_hour=10, hours=2, actor=other_student)
        assert exc_info.value.code == "SLOT_UNAVAILABLE"

        start = at(lesson_day, 10)
        key = _derived_key(OTHER_STUDENT_ID, "Math", start, start + timedelta(hours=2))
        assert not guard.store.exists(guard.idem_key(key))

    def test_other_tutors_calendar_is_independent(self, booking_service, student, lesson_day, book):
        book(start_hour=10)
        start = at(lesson_day, 10)
        outcome = booking_service.create_appointment(
            student,
            AppointmentCreate(
                tutor_id=OTHER_TUTOR_ID,
                subject="Math",
                start_time=start,
                end_time=start + timedelta(hours=1),
            ),
        )
        assert outcome.appointment.tutor_id == OTHER_TUTOR_ID

    def test_cancelled_range_can_be_rebooked(self, book, lifecycle_service, student):
        first = book(start_hour=10)
        lifecycle_service.cancel(student, first.appointment.id)

        again = book(start_hour=10)
        assert again.duplicate is False
        assert again.appointment.id != first.appointment.id

    def test_notification_failure_does_not_fail_booking(self, db, guard, student, lesson_day):
        repository = MagicMock()
        repository.create.side_effect = RuntimeError("delivery down")
        service = BookingService(db, guard, notification_service=NotificationService(db, repository))
        start = at(lesson_day, 10)

        outcome = service.create_appointment(
            student,
            AppointmentCreate(
                tutor_id=TUTOR_ID, subject="Math", start_time=start, end_time=start + timedelta(hours=1)
            ),
        )

        assert db.query(Appointment).filter_by(id=outcome.appointment.id).count() == 1
        assert repository.create.call_count == 2

    def test_store_outage_fails_open(self, db, student, lesson_day):
        client = MagicMock()
        client.set.side_effect = ConnectionError("redis down")
        service = BookingService(db, IdempotencyGuard(RedisIdempotencyStore(client=client)))
        start = at(lesson_day, 10)
        booking = AppointmentCreate(
            tutor_id=TUTOR_ID, subject="Math", start_time=start, end_time=start + timedelta(hours=1)
        )

        first = service.create_appointment(student, booking)
        assert first.duplicate is False

        # The unique idempotency key column still collapses the replay
        second = service.create_appointment(student, booking)
        assert second.duplicate is True
        assert second.appointment.id == first.appointment.id


class TestRateSnapshot:
    def test_most_specific_rate_is_snapshotted(self, db, book):
        db.add_all(
            [
                TutorRate(tutor_id=TUTOR_ID, hourly_rate=Decimal("40.00"), currency="EUR"),
                TutorRate(
                    tutor_id=TUTOR_ID,
                    student_id=STUDENT_ID,
                    subject="Math",
                    hourly_rate=Decimal("60.00"),
                    currency="EUR",
                ),
            ]
        )
        db.commit()

        appointment = book(start_hour=10, hours=2).appointment
        assert appointment.hourly_rate == Decimal("60.00")
        assert appointment.currency == "EUR"
        assert appointment.total_cost == Decimal("120.00")

    def test_later_rate_change_does_not_rewrite_history(self, db, book):
        rate = TutorRate(tutor_id=TUTOR_ID, hourly_rate=Decimal("40.00"), currency="USD")
        db.add(rate)
        db.commit()
        appointment = book(start_hour=10).appointment

        rate.hourly_rate = Decimal("80.00")
        db.commit()
        db.refresh(appointment)
        assert appointment.hourly_rate == Decimal("40.00")

    def test_hours_between(self, lesson_day):
        start = at(lesson_day, 10)
        assert hours_between(start, start + timedelta(minutes=90)) == Decimal("1.5")


class TestValidation:
    @pytest.mark.parametrize(
        "start_hour,start_minute,minutes",
        [
            (10, 0, 0),
            (10, 0, -30),
            (10, 0, 10),
            (8, 0, 9 * 60),
        ],
    )
    def test_bad_intervals_are_rejected(
        self, booking_service, student, lesson_day, start_hour, start_minute, minutes
    ):
        start = at(lesson_day, start_hour, start_minute)
        with pytest.raises(ValidationException):
            booking_service.create_appointment(
                student,
                AppointmentCreate(
                    tutor_id=TUTOR_ID,
                    subject="Math",
                    start_time=start,
                    end_time=start + timedelta(minutes=minutes),
                ),
            )

    def test_blank_subject_is_rejected(self, booking_service, student, lesson_day):
        start = at(lesson_day, 10)
        with pytest.raises(ValidationException):
            booking_service.create_appointment(
                student,
                AppointmentCreate(
                    tutor_id=TUTOR_ID, subject="   ", start_time=start, end_time=start + timedelta(hours=1)
                ),
            )

    def test_missing_interval_is_rejected(self, booking_service, student):
        with pytest.raises(ValidationException):
            booking_service.create_appointment(
                student, AppointmentCreate(tutor_id=TUTOR_ID, subject="Math")
            )

    def test_student_cannot_book_for_someone_else(self, booking_service, student, lesson_day):
        start = at(lesson_day, 10)
        with pytest.raises(ForbiddenException):
            booking_service.create_appointment(
                student,
                AppointmentCreate(
                    tutor_id=TUTOR_ID,
                    student_id=OTHER_STUDENT_ID,
                    subject="Math",
                    start_time=start,
                    end_time=start + timedelta(hours=1),
                ),
            )

    def test_admin_books_on_behalf_of_student(self, booking_service, admin, lesson_day):
        start = at(lesson_day, 10)
        outcome = booking_service.create_appointment(
            admin,
            AppointmentCreate(
                tutor_id=TUTOR_ID,
                student_id=STUDENT_ID,
                subject="Math",
                start_time=start,
                end_time=start + timedelta(hours=1),
            ),
        )
        assert outcome.appointment.student_id == STUDENT_ID


class TestSlotBooking:
    def test_booking_a_slot_uses_its_interval(
        self, availability_service, booking_service, tutor, student, lesson_day
    ):
        slot = availability_service.create_slot(tutor, TUTOR_ID, lesson_day, time(9), time(10, 30))

        outcome = booking_service.create_appointment(
            student, AppointmentCreate(tutor_id=TUTOR_ID, subject="Math", slot_id=slot.id)
        )

        appointment = outcome.appointment
        assert appointment.start_time == at(lesson_day, 9)
        assert appointment.end_time == at(lesson_day, 10, 30)
        assert appointment.availability_slot_id == slot.id
        assert appointment.total_cost == Decimal("75.00")
        # Slots stay open; overlap is enforced against appointments
        assert slot.is_available is True

    def test_sub_range_of_slot(self, availability_service, booking_service, tutor, student, lesson_day):
        slot = availability_service.create_slot(tutor, TUTOR_ID, lesson_day, time(9), time(12))
        outcome = booking_service.create_appointment(
            student,
            AppointmentCreate(
                tutor_id=TUTOR_ID,
                subject="Math",
                slot_id=slot.id,
                start_time=at(lesson_day, 10),
                end_time=at(lesson_day, 11),
            ),
        )
        assert outcome.appointment.start_time == at(lesson_day, 10)

        with pytest.raises(ValidationException):
            booking_service.create_appointment(
                student,
                AppointmentCreate(
                    tutor_id=TUTOR_ID,
                    subject="Math",
                    slot_id=slot.id,
                    start_time=at(lesson_day, 11),
                    end_time=at(lesson_day, 13),
                ),
            )

    def test_slot_of_another_tutor_is_rejected(
        self, availability_service, booking_service, other_tutor, student, lesson_day
    ):
        slot = availability_service.create_slot(
            other_tutor, OTHER_TUTOR_ID, lesson_day, time(9), time(10)
        )
        with pytest.raises(ValidationException):
            booking_service.create_appointment(
                student, AppointmentCreate(tutor_id=TUTOR_ID, subject="Math", slot_id=slot.id)
            )

    def test_unknown_slot(self, booking_service, student):
        with pytest.raises(NotFoundException):
            booking_service.create_appointment(
                student, AppointmentCreate(tutor_id=TUTOR_ID, subject="Math", slot_id="missing")
            )

    def test_disabled_slot_is_unavailable(
        self, availability_service, booking_service, tutor, student, lesson_day
    ):
        slot = availability_service.create_slot(tutor, TUTOR_ID, lesson_day, time(9), time(10))
        slot.is_available = False
        availability_service.db.commit()

        with pytest.raises(SlotUnavailableException):
            booking_service.create_appointment(
                student, AppointmentCreate(tutor_id=TUTOR_ID, subject="Math", slot_id=slot.id)
            )


class TestQueries:
    def test_parties_see_their_appointment(self, booking_service, book, student, tutor, other_student):
        appointment = book().appointment
        assert booking_service.get_appointment(student, appointment.id).id == appointment.id
        assert booking_service.get_appointment(tutor, appointment.id).id == appointment.id
        with pytest.raises(ForbiddenException):
            booking_service.get_appointment(other_student, appointment.id)

    def test_unknown_appointment(self, booking_service, student):
        with pytest.raises(NotFoundException):
            booking_service.get_appointment(student, "01JZZZZZZZZZZZZZZZZZZZZZZZ")

    def test_listing_is_scoped_to_caller(
        self, booking_service, book, student, other_student, tutor, admin
    ):
        book(start_hour=9)
        book(start_hour=11, actor=other_student)

        assert len(booking_service.list_appointments(student)) == 1
        # A student cannot widen the filter to someone else
        assert len(booking_service.list_appointments(student, student_id=OTHER_STUDENT_ID)) == 1
        assert len(booking_service.list_appointments(tutor)) == 2
        assert len(booking_service.list_appointments(admin, student_id=OTHER_STUDENT_ID)) == 1


class TestConcurrentBooking:
    def test_only_one_of_two_overlapping_requests_wins(
        self, tmp_path, student, other_student, lesson_day
    ):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False}
        )
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        guard = IdempotencyGuard(InMemoryIdempotencyStore(), namespace="race")
        start = at(lesson_day, 10)
        barrier = threading.Barrier(2)
        results = []

        def attempt(actor, minutes):
            session = Session()
            try:
                service = BookingService(session, guard)
                barrier.wait()
                try:
                    outcome = service.create_appointment(
                        actor,
                        AppointmentCreate(
                            tutor_id=TUTOR_ID,
                            subject="Math",
                            start_time=start,
                            end_time=start + timedelta(minutes=minutes),
                        ),
                    )
                    results.append(("ok", outcome.appointment.id))
                except SlotUnavailableException:
                    results.append(("conflict", None))
            finally:
                session.close()

        threads = [
            threading.Thread(target=attempt, args=(student, 60)),
            threading.Thread(target=attempt, args=(other_student, 90)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        try:
            assert sorted(r[0] for r in results) == ["conflict", "ok"]
            check = Session()
            try:
                assert check.query(Appointment).count() == 1
            finally:
                check.close()
        finally:
            engine.dispose()

    def test_identical_concurrent_requests_create_one_appointment(
        self, tmp_path, student, lesson_day
    ):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'dupes.db'}", connect_args={"check_same_thread": False}
        )
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        guard = IdempotencyGuard(InMemoryIdempotencyStore(), namespace="dupes")
        start = at(lesson_day, 10)
        barrier = threading.Barrier(4)
        outcomes = []

        def attempt():
            session = Session()
            try:
                service = BookingService(session, guard)
                barrier.wait()
                try:
                    outcome = service.create_appointment(
                        student,
                        AppointmentCreate(
                            tutor_id=TUTOR_ID,
                            subject="Math",
                            start_time=start,
                            end_time=start + timedelta(hours=1),
                        ),
                        idempotency_key="same-click",
                    )
                    outcomes.append(outcome.duplicate)
                except DuplicateRequestException:
                    outcomes.append("in_flight")
            finally:
                session.close()

        threads = [threading.Thread(target=attempt) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        try:
            assert outcomes.count(False) == 1
            check = Session()
            try:
                assert check.query(Appointment).count() == 1
            finally:
                check.close()
        finally:
            engine.dispose()
