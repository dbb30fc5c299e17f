"""Reschedule requests: parent-side validation, staff approval and the per-contract cap"""

from datetime import date, datetime, time
from decimal import Decimal

import pytest

from mathbridge.domain.reschedule.schemas import RescheduleCreate
from mathbridge.domain.reschedule.service import RescheduleService
from mathbridge.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from mathbridge.models import Contract, RescheduleRequest, TutoringSession, User, WalletTransaction

TODAY = date(2024, 1, 2)


@pytest.fixture
def add_session(db):
    def _add_session(contract, tutor, day, start=time(16, 0), end=time(17, 30), status="scheduled"):
        session = TutoringSession(
            contract_id=contract.id,
            tutor_id=tutor.id,
            session_date=day,
            start_time=datetime.combine(day, start),
            end_time=datetime.combine(day, end),
            is_online=True,
            video_call_platform="meet",
            status=status,
        )
        db.add(session)
        db.commit()
        db.refresh(session)
        return session

    return _add_session


@pytest.fixture
def active_contract(parent, tutor, make_package, make_contract):
    return make_contract(parent, tutor, make_package(max_reschedule=1), status="active")


@pytest.fixture
def session(active_contract, tutor, add_session):
    return add_session(active_contract, tutor, date(2024, 1, 8))


def request_data(session, day=date(2024, 1, 9), start=time(17, 30), end=time(19, 0), reason="exam week"):
    return RescheduleCreate(sessionId=session.id, requestedDate=day, startTime=start, endTime=end, reason=reason)


class TestCreateRequest:
    async def test_creates_pending_request(self, db, parent, session, sent_emails):
        request = await RescheduleService(db).create_request(parent, request_data(session), today=TODAY)

        assert request.status == "pending"
        assert request.requested_tutor_id == session.tutor_id
        assert sent_emails.await_count == 1

    @pytest.mark.parametrize(
        "start,end",
        [(time(15, 0), time(16, 30)), (time(16, 0), time(17, 0)), (time(20, 30), time(21, 30))],
    )
    async def test_slot_rules(self, db, parent, session, start, end):
        with pytest.raises(ValidationError):
            await RescheduleService(db).create_request(
                parent, request_data(session, start=start, end=end), today=TODAY
            )

    async def test_latest_slot_accepted(self, db, parent, session):
        data = request_data(session, start=time(20, 30), end=time(22, 0))
        request = await RescheduleService(db).create_request(parent, data, today=TODAY)
        assert request.end_time == time(22, 0)

    async def test_other_parent(self, db, session, make_user):
        with pytest.raises(PermissionDeniedError):
            await RescheduleService(db).create_request(make_user("parent"), request_data(session), today=TODAY)

    async def test_past_session(self, db, parent, session):
        with pytest.raises(ConflictError):
            await RescheduleService(db).create_request(
                parent, request_data(session), today=date(2024, 1, 9)
            )

    async def test_after_contract_end(self, db, parent, session):
        with pytest.raises(ValidationError):
            await RescheduleService(db).create_request(
                parent, request_data(session, day=date(2024, 2, 5)), today=TODAY
            )

    async def test_one_pending_per_contract(self, db, parent, tutor, session, active_contract, add_session):
        other = add_session(active_contract, tutor, date(2024, 1, 11))
        service = RescheduleService(db)
        await service.create_request(parent, request_data(session), today=TODAY)

        with pytest.raises(ConflictError):
            await service.create_request(parent, request_data(other, day=date(2024, 1, 12)), today=TODAY)

    async def test_contract_must_be_active(self, db, parent, session, active_contract):
        active_contract.status = "completed"
        db.commit()
        with pytest.raises(ConflictError):
            await RescheduleService(db).create_request(parent, request_data(session), today=TODAY)

    async def test_cap_reached(self, db, parent, session, active_contract):
        active_contract.reschedule_count = 1
        db.commit()
        with pytest.raises(ConflictError):
            await RescheduleService(db).create_request(parent, request_data(session), today=TODAY)

    async def test_unknown_session(self, db, parent):
        data = RescheduleCreate(
            sessionId=999, requestedDate=date(2024, 1, 9), startTime=time(16, 0), endTime=time(17, 30)
        )
        with pytest.raises(NotFoundError):
            await RescheduleService(db).create_request(parent, data, today=TODAY)


class TestApproveRequest:
    async def test_moves_session(self, db, parent, staff, session, active_contract):
        service = RescheduleService(db)
        request = await service.create_request(parent, request_data(session), today=TODAY)

        new_session = await service.approve_request(staff, request.id, note="ok")

        assert new_session.status == "scheduled"
        assert new_session.start_time == datetime(2024, 1, 9, 17, 30)
        assert new_session.end_time == datetime(2024, 1, 9, 19, 0)
        db.expire_all()
        assert db.get(TutoringSession, session.id).status == "rescheduled"
        assert db.get(Contract, active_contract.id).reschedule_count == 1
        closed = db.get(RescheduleRequest, request.id)
        assert closed.status == "approved"
        assert closed.staff_id == staff.id
        assert closed.processed_at is not None
        assert closed.reason == "exam week | Staff note: ok"

    async def test_cap_enforced_at_approval(self, db, parent, staff, session, active_contract):
        service = RescheduleService(db)
        request = await service.create_request(parent, request_data(session), today=TODAY)
        active_contract.reschedule_count = 1
        db.commit()

        with pytest.raises(ConflictError):
            await service.approve_request(staff, request.id)

        db.expire_all()
        assert db.get(TutoringSession, session.id).status == "scheduled"
        assert db.get(RescheduleRequest, request.id).status == "pending"

    async def test_tutor_busy(self, db, parent, tutor, staff, session, active_contract, add_session):
        add_session(active_contract, tutor, date(2024, 1, 9), start=time(17, 0), end=time(18, 30))
        service = RescheduleService(db)
        request = await service.create_request(parent, request_data(session), today=TODAY)

        with pytest.raises(ConflictError, match="not available"):
            await service.approve_request(staff, request.id)

    async def test_substitute_tutor(self, db, parent, staff, session, make_user):
        substitute = make_user("tutor")
        service = RescheduleService(db)
        request = await service.create_request(parent, request_data(session), today=TODAY)

        new_session = await service.approve_request(staff, request.id, new_tutor_id=substitute.id)

        assert new_session.tutor_id == substitute.id

    async def test_new_tutor_must_be_tutor(self, db, parent, staff, session, make_user):
        service = RescheduleService(db)
        request = await service.create_request(parent, request_data(session), today=TODAY)

        with pytest.raises(ValidationError):
            await service.approve_request(staff, request.id, new_tutor_id=make_user("parent").id)

    async def test_cannot_review_twice(self, db, parent, staff, session):
        service = RescheduleService(db)
        request = await service.create_request(parent, request_data(session), today=TODAY)
        await service.reject_request(staff, request.id, "no tutor free")

        with pytest.raises(ConflictError):
            await service.approve_request(staff, request.id)


class TestRejectRequest:
    async def test_rejects_and_notifies(self, db, parent, staff, session, sent_emails):
        service = RescheduleService(db)
        request = await service.create_request(parent, request_data(session), today=TODAY)

        rejected = await service.reject_request(staff, request.id, "no tutor free")

        assert rejected.status == "rejected"
        assert "no tutor free" in rejected.reason
        db.expire_all()
        assert db.get(TutoringSession, session.id).status == "scheduled"
        assert sent_emails.await_count == 2


class TestCancelAndRefund:
    async def test_cancels_session_and_refunds_one_session(
        self, db, parent, staff, session, active_contract
    ):
        service = RescheduleService(db)
        request = await service.create_request(parent, request_data(session), today=TODAY)

        refund = await service.cancel_session_and_refund(staff, request.id)

        assert refund.amount == Decimal("250000.00")
        assert refund.transaction_type == "Refund"
        assert refund.status == "Completed"
        assert refund.contract_id == active_contract.id
        assert refund.description == "Refund for cancelled session on 08/01/2024 at 16:00"
        db.expire_all()
        assert db.get(TutoringSession, session.id).status == "cancelled"
        assert db.get(User, parent.id).wallet_balance == Decimal("250000")
        assert db.get(Contract, active_contract.id).reschedule_count == 1
        closed = db.get(RescheduleRequest, request.id)
        assert closed.status == "approved"
        assert closed.staff_id == staff.id
        assert closed.reason == "exam week | Cancelled with refund"

    async def test_reschedule_count_stays_at_limit(self, db, parent, staff, session, active_contract):
        service = RescheduleService(db)
        request = await service.create_request(parent, request_data(session), today=TODAY)
        active_contract.reschedule_count = 1
        db.commit()

        await service.cancel_session_and_refund(staff, request.id)

        db.expire_all()
        assert db.get(Contract, active_contract.id).reschedule_count == 1
        assert db.get(TutoringSession, session.id).status == "cancelled"

    async def test_reviewed_request_rejected(self, db, parent, staff, session):
        service = RescheduleService(db)
        request = await service.create_request(parent, request_data(session), today=TODAY)
        await service.reject_request(staff, request.id, "no tutor free")

        with pytest.raises(ConflictError):
            await service.cancel_session_and_refund(staff, request.id)

        db.expire_all()
        assert db.get(TutoringSession, session.id).status == "scheduled"
        assert db.query(WalletTransaction).count() == 0
        assert db.get(User, parent.id).wallet_balance == Decimal("0")

    async def test_session_no_longer_scheduled(self, db, parent, staff, session):
        service = RescheduleService(db)
        request = await service.create_request(parent, request_data(session), today=TODAY)
        session.status = "completed"
        db.commit()

        with pytest.raises(ConflictError):
            await service.cancel_session_and_refund(staff, request.id)

        db.expire_all()
        assert db.get(RescheduleRequest, request.id).status == "pending"
        assert db.query(WalletTransaction).count() == 0


class TestAvailableSubstitutes:
    async def test_busy_and_inactive_substitutes_excluded(
        self, db, parent, tutor, make_user, make_package, make_contract, add_session
    ):
        free = make_user("tutor")
        busy = make_user("tutor")
        contract = make_contract(
            parent,
            tutor,
            make_package(max_reschedule=2),
            status="active",
            substitute_tutor1_id=free.id,
            substitute_tutor2_id=busy.id,
        )
        session = add_session(contract, tutor, date(2024, 1, 8))
        add_session(contract, busy, date(2024, 1, 9), start=time(17, 30), end=time(19, 0))
        service = RescheduleService(db)
        request = await service.create_request(parent, request_data(session), today=TODAY)

        available = service.get_available_substitute_tutors(request.id)

        assert [t.id for t in available] == [free.id]
