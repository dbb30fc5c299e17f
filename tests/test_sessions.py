"""Session status updates and reminder runs"""

from datetime import date, datetime, time, timedelta

import pytest

from mathbridge.domain.sessions.service import SessionService
from mathbridge.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from mathbridge.models import Notification, TutoringSession

NOW = datetime(2024, 1, 7, 18, 0)


@pytest.fixture
def scheduled(db, parent, tutor, package, make_contract):
    contract = make_contract(parent, tutor, package, status="active")

    def _scheduled(start, status="scheduled"):
        session = TutoringSession(
            contract_id=contract.id,
            tutor_id=tutor.id,
            session_date=start.date(),
            start_time=start,
            end_time=start + timedelta(minutes=90),
            status=status,
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        return session

    return _scheduled


class TestReminders:
    async def test_reminds_sessions_in_window(self, db, parent, scheduled):
        tomorrow = scheduled(NOW + timedelta(hours=22))
        scheduled(NOW + timedelta(hours=30))
        scheduled(NOW + timedelta(hours=5), status="cancelled")

        sent = await SessionService(db).send_reminders(24, now=NOW)

        assert sent == 1
        notification = db.query(Notification).filter_by(user_id=parent.id).one()
        assert notification.session_id == tomorrow.id
        assert notification.notification_type == "SessionReminder24hr"

    async def test_each_reminder_type_sent_once(self, db, scheduled):
        scheduled(NOW + timedelta(minutes=45))
        service = SessionService(db)

        assert await service.send_reminders(1, now=NOW) == 1
        assert await service.send_reminders(1, now=NOW) == 0
        # The day-ahead reminder is a different type
        assert await service.send_reminders(24, now=NOW) == 1


class TestStatusUpdate:
    def test_tutor_completes_session(self, db, tutor, scheduled):
        session = scheduled(datetime(2024, 1, 8, 16, 0))

        updated = SessionService(db).update_status(tutor, session.id, "completed")

        assert updated.status == "completed"

    def test_completed_is_final(self, db, tutor, scheduled):
        session = scheduled(datetime(2024, 1, 8, 16, 0), status="completed")
        with pytest.raises(ConflictError):
            SessionService(db).update_status(tutor, session.id, "cancelled")

    def test_parent_cannot_update(self, db, parent, scheduled):
        session = scheduled(datetime(2024, 1, 8, 16, 0))
        with pytest.raises(PermissionDeniedError):
            SessionService(db).update_status(parent, session.id, "completed")

    def test_get_session_visibility(self, db, parent, scheduled, make_user):
        session = scheduled(datetime(2024, 1, 8, 16, 0))
        service = SessionService(db)

        assert service.get_session(parent, session.id).id == session.id
        with pytest.raises(NotFoundError):
            service.get_session(make_user("tutor"), session.id)

    def test_parent_calendar_range(self, db, parent, scheduled):
        scheduled(datetime(2024, 1, 8, 16, 0))
        scheduled(datetime(2024, 2, 8, 16, 0))

        sessions = SessionService(db).get_sessions_for_parent(parent, date(2024, 1, 1), date(2024, 1, 31))

        assert [s.session_date for s in sessions] == [date(2024, 1, 8)]
        assert sessions[0].start_time.time() == time(16, 0)


@pytest.fixture
def book(db):
    def _book(contract, tutor, start, status="scheduled"):
        session = TutoringSession(
            contract_id=contract.id,
            tutor_id=tutor.id,
            session_date=start.date(),
            start_time=start,
            end_time=start + timedelta(minutes=90),
            status=status,
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        return session

    return _book


MONDAY_4PM = datetime(2024, 1, 8, 16, 0)


class TestReplacementTutors:
    def test_free_substitutes_come_first(
        self, db, parent, tutor, package, make_user, make_contract, book
    ):
        free, busy = make_user("tutor"), make_user("tutor")
        make_user("tutor")
        contract = make_contract(
            parent,
            tutor,
            package,
            status="active",
            substitute_tutor1_id=free.id,
            substitute_tutor2_id=busy.id,
        )
        session = book(contract, tutor, MONDAY_4PM)
        book(contract, busy, MONDAY_4PM + timedelta(minutes=30))

        replacements = SessionService(db).get_replacement_tutors(session.id)

        assert [(t.id, is_sub) for t, is_sub in replacements] == [(free.id, True)]

    def test_falls_back_to_other_free_tutors(
        self, db, parent, tutor, package, make_user, make_contract, book
    ):
        busy_sub = make_user("tutor", full_name="Busy Sub")
        free = make_user("tutor", full_name="Free Tutor")
        clashing = make_user("tutor", full_name="Clashing Tutor")
        make_user("tutor", status="inactive")
        contract = make_contract(parent, tutor, package, status="active", substitute_tutor1_id=busy_sub.id)
        session = book(contract, tutor, MONDAY_4PM)
        book(contract, busy_sub, MONDAY_4PM)
        book(contract, clashing, MONDAY_4PM - timedelta(minutes=60))

        replacements = SessionService(db).get_replacement_tutors(session.id)

        assert [(t.id, is_sub) for t, is_sub in replacements] == [(free.id, False)]

    def test_only_scheduled_sessions(self, db, scheduled):
        session = scheduled(MONDAY_4PM, status="completed")
        with pytest.raises(ConflictError):
            SessionService(db).get_replacement_tutors(session.id)


class TestChangeTutor:
    async def test_reassigns_and_notifies_parent(self, db, parent, staff, make_user, scheduled):
        session = scheduled(MONDAY_4PM)
        substitute = make_user("tutor", full_name="Thu Ha")

        changed = await SessionService(db).change_session_tutor(staff, session.id, substitute.id)

        assert changed.tutor_id == substitute.id
        db.expire_all()
        assert db.get(TutoringSession, session.id).tutor_id == substitute.id
        notification = db.query(Notification).filter_by(user_id=parent.id).one()
        assert notification.notification_type == "TutorChanged"
        assert notification.session_id == session.id
        assert "Thu Ha" in notification.message

    async def test_busy_tutor(self, db, tutor, staff, make_user, scheduled, book):
        session = scheduled(MONDAY_4PM)
        busy = make_user("tutor")
        book(session.contract, busy, MONDAY_4PM + timedelta(minutes=45))

        with pytest.raises(ConflictError, match="not available on 08/01/2024 from 16:00 to 17:30"):
            await SessionService(db).change_session_tutor(staff, session.id, busy.id)

        db.expire_all()
        assert db.get(TutoringSession, session.id).tutor_id == tutor.id

    async def test_must_be_active_tutor(self, db, staff, make_user, scheduled):
        session = scheduled(MONDAY_4PM)
        service = SessionService(db)

        with pytest.raises(ValidationError):
            await service.change_session_tutor(staff, session.id, make_user("parent").id)
        with pytest.raises(ValidationError):
            await service.change_session_tutor(staff, session.id, make_user("tutor", status="inactive").id)

    async def test_same_tutor(self, db, tutor, staff, scheduled):
        session = scheduled(MONDAY_4PM)
        with pytest.raises(ValidationError):
            await SessionService(db).change_session_tutor(staff, session.id, tutor.id)

    async def test_completed_session(self, db, staff, make_user, scheduled):
        session = scheduled(MONDAY_4PM, status="completed")
        with pytest.raises(ConflictError):
            await SessionService(db).change_session_tutor(staff, session.id, make_user("tutor").id)

    async def test_unknown_tutor(self, db, staff, scheduled):
        session = scheduled(MONDAY_4PM)
        with pytest.raises(NotFoundError):
            await SessionService(db).change_session_tutor(staff, session.id, 999)
