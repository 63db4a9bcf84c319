# backend/tests/integration/test_ledger_service.py
"""
Integration tests for LedgerService: hour accounting, reminders, payment
application and payment status changes.
"""

from decimal import Decimal
import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.enums import NotificationKind, PaymentStatus
from app.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from app.database import Base
from app.models.ledger import LectureHours, LectureSession
from app.models.payment import Payment
from app.models.rate import TutorRate
from app.services.ledger_service import PAYMENT_TRANSITIONS, LedgerService, quantize_hours
from app.services.notification_service import NotificationService
from tests._utils import OTHER_STUDENT_ID, STUDENT_ID, TUTOR_ID

D = Decimal


@pytest.fixture
def log(ledger_service, tutor):
    def _log(hours, subject="Math", student_id=STUDENT_ID):
        return ledger_service.log_session(tutor, student_id, TUTOR_ID, subject, D(hours))

    return _log


class TestRecordSession:
    def test_first_session_creates_ledger(self, log):
        record = log("1.5")
        assert record.created_ledger is True
        assert record.ledger.total_hours == D("1.50")
        assert record.ledger.unpaid_hours == D("1.50")
        assert record.ledger.payment_interval == 10
        assert record.session.appointment_id is None
        assert record.ledger.last_session_date is not None

    def test_hours_accumulate(self, log):
        log("1")
        record = log("2.25")
        assert record.created_ledger is False
        assert record.ledger.total_hours == D("3.25")
        assert record.unpaid_hours == D("3.25")

    def test_non_positive_hours_are_rejected(self, ledger_service, tutor):
        with pytest.raises(ValidationException):
            ledger_service.log_session(tutor, STUDENT_ID, TUTOR_ID, "Math", D("0"))

    def test_other_tutor_cannot_log(self, ledger_service, other_tutor):
        with pytest.raises(ForbiddenException):
            ledger_service.log_session(other_tutor, STUDENT_ID, TUTOR_ID, "Math", D("1"))

    def test_hours_recorded_notification(self, log, notification_service):
        log("1")
        kinds = [n.kind for n in notification_service.list_for_user(STUDENT_ID)]
        assert kinds == [NotificationKind.HOURS_RECORDED.value]


class TestReminder:
    def test_nine_hours_at_interval_ten_fires_once(self, log):
        first = log("9")
        assert first.reminder_sent is True
        assert first.ledger.reminder_sent is True

        second = log("0.5")
        assert second.reminder_sent is False
        assert second.unpaid_hours == D("9.50")

    def test_below_threshold_does_not_fire(self, log):
        assert log("8.5").reminder_sent is False
        assert log("0.5").reminder_sent is True

    def test_reminder_due_is_pure(self):
        ledger = SimpleNamespace(reminder_sent=False, payment_interval=10, unpaid_hours=D("8.99"))
        assert LedgerService.reminder_due(ledger) is False
        ledger.unpaid_hours = D("9")
        assert LedgerService.reminder_due(ledger) is True
        ledger.reminder_sent = True
        assert LedgerService.reminder_due(ledger) is False

    def test_payment_resets_the_cycle(self, log, ledger_service, tutor):
        record = log("9")
        ledger_service.apply_payment(tutor, record.ledger.id, D("9"), D("450"))
        assert record.ledger.reminder_sent is False

        assert log("8").reminder_sent is False
        assert log("1").reminder_sent is True

    def test_reminder_notifies_both_parties(self, log, notification_service):
        log("9")
        for user_id in (STUDENT_ID, TUTOR_ID):
            kinds = [n.kind for n in notification_service.list_for_user(user_id)]
            assert NotificationKind.PAYMENT_REMINDER.value in kinds


class TestPaymentInterval:
    def test_change_does_not_fire_a_reminder(self, log, ledger_service, tutor):
        record = log("5")
        ledger = ledger_service.update_payment_interval(tutor, record.ledger.id, 3)
        assert ledger.payment_interval == 3
        assert ledger.reminder_sent is False

        # The next evaluation sees the new interval
        assert log("0.5").reminder_sent is True

    @pytest.mark.parametrize("interval", [0, -2])
    def test_non_positive_interval_is_rejected(self, log, ledger_service, tutor, interval):
        record = log("1")
        with pytest.raises(ValidationException):
            ledger_service.update_payment_interval(tutor, record.ledger.id, interval)

    def test_pending_reminders_window(self, log, ledger_service, tutor, student):
        record = log("8")
        assert ledger_service.pending_reminders(tutor) == []

        ledger_service.update_payment_interval(tutor, record.ledger.id, 9)
        pending = ledger_service.pending_reminders(tutor)
        assert [ledger.id for ledger in pending] == [record.ledger.id]

        with pytest.raises(ForbiddenException):
            ledger_service.pending_reminders(student)


class TestApplyPayment:
    def test_partial_payment_settles_oldest_sessions_first(self, log, ledger_service, tutor):
        s1 = log("1").session
        s2 = log("2").session
        s3 = log("1.5").session
        ledger_id = s1.lecture_hours_id

        application = ledger_service.apply_payment(tutor, ledger_id, D("2.5"), D("125"))

        assert application.hours_applied == D("2.50")
        assert application.hours_absorbed == D("0")
        assert application.ledger.unpaid_hours == D("2.00")
        assert application.settled_session_ids == [s1.id]
        assert s1.paid is True
        assert s2.paid is False
        assert s3.paid is False

    def test_overpayment_is_clamped_and_absorbed(self, log, ledger_service, tutor, caplog):
        s1 = log("1").session
        s2 = log("1").session

        with caplog.at_level("INFO"):
            application = ledger_service.apply_payment(tutor, s1.lecture_hours_id, D("5"), D("250"))

        assert application.hours_applied == D("2.00")
        assert application.hours_absorbed == D("3.00")
        assert application.ledger.unpaid_hours == D("0")
        assert application.ledger.total_hours == D("2.00")
        assert set(application.settled_session_ids) == {s1.id, s2.id}
        assert any(r.getMessage() == "ledger_overpayment_absorbed" for r in caplog.records)

    def test_payment_record_is_paid(self, log, ledger_service, tutor):
        record = log("2")
        application = ledger_service.apply_payment(
            tutor, record.ledger.id, D("2"), D("100"), currency="eur", payment_method="cash"
        )
        payment = application.payment
        assert payment.status == PaymentStatus.PAID.value
        assert payment.currency == "EUR"
        assert payment.paid_date is not None
        assert payment.payment_method == "cash"

    @pytest.mark.parametrize("hours,amount", [("0", "10"), ("-1", "10"), ("1", "-5")])
    def test_bad_figures_are_rejected(self, log, ledger_service, tutor, hours, amount):
        record = log("2")
        with pytest.raises(ValidationException):
            ledger_service.apply_payment(tutor, record.ledger.id, D(hours), D(amount))

    def test_unknown_ledger(self, ledger_service, tutor):
        with pytest.raises(NotFoundException):
            ledger_service.apply_payment(tutor, "missing", D("1"), D("50"))

    def test_student_cannot_apply_payment(self, log, ledger_service, student):
        record = log("2")
        with pytest.raises(ForbiddenException):
            ledger_service.apply_payment(student, record.ledger.id, D("1"), D("50"))


class TestManualSession:
    def test_manual_session_is_unlinked(self, log, ledger_service, tutor):
        record = log("1")
        manual = ledger_service.record_manual_session(tutor, record.ledger.id, D("2"), "backfill")

        assert manual.session.appointment_id is None
        assert manual.session.notes == "backfill"
        assert manual.ledger.id == record.ledger.id
        assert manual.ledger.total_hours == D("3.00")
        assert manual.unpaid_hours == D("3.00")

    def test_manual_session_can_trigger_reminder(self, log, ledger_service, tutor):
        record = log("8")
        manual = ledger_service.record_manual_session(tutor, record.ledger.id, D("1"))
        assert manual.reminder_sent is True

    def test_unknown_ledger(self, ledger_service, tutor):
        with pytest.raises(NotFoundException):
            ledger_service.record_manual_session(tutor, "missing", D("1"))


class TestPaymentStatus:
    def test_transition_table(self):
        assert PAYMENT_TRANSITIONS[PaymentStatus.PAID] == set()
        assert PAYMENT_TRANSITIONS[PaymentStatus.CANCELLED] == set()
        assert PaymentStatus.PAID in PAYMENT_TRANSITIONS[PaymentStatus.OVERDUE]

    def test_scheduled_payment_leaves_ledger_untouched(self, log, ledger_service, tutor):
        record = log("3")
        payment = ledger_service.schedule_payment(tutor, record.ledger.id, D("3"), D("150"))
        assert payment.status == PaymentStatus.PENDING.value
        assert record.ledger.unpaid_hours == D("3.00")

    def test_pending_to_overdue_to_paid_applies(self, log, ledger_service, tutor, db):
        record = log("3")
        payment = ledger_service.schedule_payment(tutor, record.ledger.id, D("3"), D("150"))

        ledger_service.update_payment_status(tutor, payment.id, PaymentStatus.OVERDUE)
        paid = ledger_service.mark_payment_received(tutor, payment.id, payment_method="card")

        assert paid.status == PaymentStatus.PAID.value
        assert paid.payment_method == "card"
        db.refresh(record.ledger)
        assert record.ledger.unpaid_hours == D("0")

    def test_paid_is_final(self, log, ledger_service, tutor):
        record = log("3")
        payment = ledger_service.apply_payment(tutor, record.ledger.id, D("1"), D("50")).payment

        with pytest.raises(ConflictException) as exc_info:
            ledger_service.update_payment_status(tutor, payment.id, PaymentStatus.CANCELLED)
        assert exc_info.value.code == "INVALID_PAYMENT_TRANSITION"

    def test_cancelled_cannot_be_paid(self, log, ledger_service, tutor):
        record = log("3")
        payment = ledger_service.schedule_payment(tutor, record.ledger.id, D("3"), D("150"))
        ledger_service.update_payment_status(tutor, payment.id, PaymentStatus.CANCELLED)

        with pytest.raises(ConflictException):
            ledger_service.mark_payment_received(tutor, payment.id)
        assert record.ledger.unpaid_hours == D("3.00")

    def test_unknown_payment(self, ledger_service, tutor):
        with pytest.raises(NotFoundException):
            ledger_service.update_payment_status(tutor, "missing", PaymentStatus.PAID)

    def test_payment_reminder_counts(self, log, ledger_service, tutor, notification_service):
        record = log("3")
        payment = ledger_service.schedule_payment(tutor, record.ledger.id, D("3"), D("150"))

        ledger_service.send_payment_reminder(tutor, payment.id)
        reminded = ledger_service.send_payment_reminder(tutor, payment.id)

        assert reminded.reminders_sent == 2
        assert reminded.last_reminder_at is not None

    def test_reminder_for_paid_payment_is_rejected(self, log, ledger_service, tutor):
        record = log("3")
        payment = ledger_service.apply_payment(tutor, record.ledger.id, D("3"), D("150")).payment
        with pytest.raises(ConflictException) as exc_info:
            ledger_service.send_payment_reminder(tutor, payment.id)
        assert exc_info.value.code == "PAYMENT_NOT_OUTSTANDING"


class TestSettleStudent:
    def test_settles_every_outstanding_ledger(self, log, ledger_service, tutor, db):
        db.add(TutorRate(tutor_id=TUTOR_ID, hourly_rate=D("40.00"), currency="USD"))
        db.commit()
        math = log("2", subject="Math")
        physics = log("1.5", subject="Physics")
        log("1", student_id=OTHER_STUDENT_ID)

        applications = ledger_service.settle_student(tutor, TUTOR_ID, STUDENT_ID, reason="term end")

        assert len(applications) == 2
        by_ledger = {a.ledger.id: a for a in applications}
        assert by_ledger[math.ledger.id].payment.amount == D("80.00")
        assert by_ledger[physics.ledger.id].payment.amount == D("60.00")
        for application in applications:
            assert application.ledger.unpaid_hours == D("0")
            assert application.payment.payment_method == "manual"
            assert application.payment.notes == "term end"

        others = ledger_service.list_ledgers(tutor, student_id=OTHER_STUDENT_ID)
        assert others[0].unpaid_hours == D("1.00")

    def test_nothing_outstanding(self, ledger_service, tutor):
        assert ledger_service.settle_student(tutor, TUTOR_ID, STUDENT_ID) == []

    def test_only_the_tutor_can_settle(self, ledger_service, student):
        with pytest.raises(ForbiddenException):
            ledger_service.settle_student(student, TUTOR_ID, STUDENT_ID)


class TestQueries:
    def test_party_access(self, log, ledger_service, student, other_student):
        record = log("1")
        assert ledger_service.get_ledger(student, record.ledger.id).id == record.ledger.id
        with pytest.raises(ForbiddenException):
            ledger_service.get_ledger(other_student, record.ledger.id)

    def test_listing_is_scoped(self, log, ledger_service, student, other_student, tutor, other_tutor):
        log("1")
        log("1", student_id=OTHER_STUDENT_ID)

        assert len(ledger_service.list_ledgers(tutor)) == 2
        assert len(ledger_service.list_ledgers(student)) == 1
        assert len(ledger_service.list_ledgers(other_tutor)) == 0

    def test_sessions_and_payments_listing(self, log, ledger_service, tutor, student):
        record = log("2")
        log("1")
        ledger_service.apply_payment(tutor, record.ledger.id, D("1"), D("50"))

        assert len(ledger_service.list_sessions(student, record.ledger.id)) == 2
        assert len(ledger_service.list_payments(student, record.ledger.id)) == 1
        assert (
            ledger_service.list_payments(student, record.ledger.id, status=PaymentStatus.PENDING)
            == []
        )


class TestNotificationFailure:
    @pytest.fixture
    def failing_repository(self):
        repository = MagicMock()
        repository.create.side_effect = RuntimeError("delivery down")
        return repository

    @pytest.fixture
    def quiet_service(self, db, failing_repository):
        return LedgerService(db, notification_service=NotificationService(db, failing_repository))

    def test_applied_payment_is_committed(self, log, quiet_service, failing_repository, tutor, db):
        ledger_id = log("2").ledger.id

        application = quiet_service.apply_payment(tutor, ledger_id, D("2"), D("100"))

        assert failing_repository.create.call_count == 2
        db.rollback()
        ledger = db.get(LectureHours, ledger_id)
        assert ledger.unpaid_hours == D("0")
        assert ledger.reminder_sent is False
        payment = db.get(Payment, application.payment.id)
        assert payment.status == PaymentStatus.PAID.value
        assert db.query(LectureSession).filter_by(lecture_hours_id=ledger_id, paid=True).count() == 1

    def test_paid_status_is_committed(self, log, quiet_service, failing_repository, tutor, db):
        ledger_id = log("3").ledger.id
        payment = quiet_service.schedule_payment(tutor, ledger_id, D("3"), D("150"))

        paid = quiet_service.update_payment_status(tutor, payment.id, PaymentStatus.PAID)

        assert paid.status == PaymentStatus.PAID.value
        assert failing_repository.create.call_count == 3
        db.rollback()
        assert db.get(Payment, payment.id).status == PaymentStatus.PAID.value
        assert db.get(Payment, payment.id).paid_date is not None
        assert db.get(LectureHours, ledger_id).unpaid_hours == D("0")


class TestConcurrentLedgerWrites:
    def test_parallel_sessions_are_all_counted(self, tmp_path, tutor):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'ledger.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

        seed = Session()
        try:
            ledger_id = LedgerService(seed).log_session(
                tutor, STUDENT_ID, TUTOR_ID, "Math", D("1")
            ).ledger.id
        finally:
            seed.close()

        workers = 8
        barrier = threading.Barrier(workers)
        errors = []

        def attempt():
            session = Session()
            try:
                service = LedgerService(session)
                barrier.wait()
                service.log_session(tutor, STUDENT_ID, TUTOR_ID, "Math", D("1"))
            except Exception as exc:
                errors.append(exc)
            finally:
                session.close()

        threads = [threading.Thread(target=attempt) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        try:
            assert errors == []
            check = Session()
            try:
                ledger = check.get(LectureHours, ledger_id)
                assert ledger.total_hours == D("9.00")
                assert ledger.unpaid_hours == D("9.00")
                assert check.query(LectureSession).filter_by(lecture_hours_id=ledger_id).count() == 9
                assert check.query(LectureHours).count() == 1
            finally:
                check.close()
        finally:
            engine.dispose()


def test_quantize_hours_rounds_half_up():
    assert quantize_hours(D("1.005")) == D("1.01")
    assert quantize_hours(D("2")) == D("2.00")
