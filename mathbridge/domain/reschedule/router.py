"""Reschedule router - FastAPI endpoints for reschedule requests"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_roles
from ...database import get_db
from ...models import User
from ..notifications.dispatcher import NotificationDispatcher, get_dispatcher
from ..sessions.schemas import SessionResponse
from ..wallet.schemas import WalletTransactionResponse
from .schemas import (
    AvailableTutor,
    RescheduleApprove,
    RescheduleCreate,
    RescheduleReject,
    RescheduleResponse,
)
from .service import RescheduleService

router = APIRouter(prefix="/reschedule", tags=["Reschedule"])


def get_reschedule_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> RescheduleService:
    """Dependency injection for RescheduleService"""
    return RescheduleService(db, dispatcher)


@router.post("", response_model=RescheduleResponse, status_code=201)
async def create_reschedule_request(
    data: RescheduleCreate,
    current_user: User = Depends(require_roles("parent")),
    service: RescheduleService = Depends(get_reschedule_service),
):
    return RescheduleResponse.from_model(await service.create_request(current_user, data))


@router.get("/parent", response_model=list[RescheduleResponse])
async def get_parent_requests(
    current_user: User = Depends(require_roles("parent")),
    service: RescheduleService = Depends(get_reschedule_service),
):
    return [RescheduleResponse.from_model(r) for r in service.get_requests_for_parent(current_user)]


@router.get("/pending", response_model=list[RescheduleResponse])
async def get_pending_requests(
    _staff: User = Depends(require_roles("staff", "admin")),
    service: RescheduleService = Depends(get_reschedule_service),
):
    return [RescheduleResponse.from_model(r) for r in service.get_pending_requests()]


@router.get("/{request_id}", response_model=RescheduleResponse)
async def get_reschedule_request(
    request_id: int,
    current_user: User = Depends(get_current_user),
    service: RescheduleService = Depends(get_reschedule_service),
):
    return RescheduleResponse.from_model(service.get_request(current_user, request_id))


@router.get("/{request_id}/available-tutors", response_model=list[AvailableTutor])
async def get_available_substitute_tutors(
    request_id: int,
    _staff: User = Depends(require_roles("staff", "admin")),
    service: RescheduleService = Depends(get_reschedule_service),
):
    tutors = service.get_available_substitute_tutors(request_id)
    return [
        AvailableTutor(tutorId=t.id, fullName=t.full_name, email=t.email, phoneNumber=t.phone_number)
        for t in tutors
    ]


@router.put("/{request_id}/approve", response_model=SessionResponse)
async def approve_reschedule_request(
    request_id: int,
    data: Optional[RescheduleApprove] = None,
    current_user: User = Depends(require_roles("staff", "admin")),
    service: RescheduleService = Depends(get_reschedule_service),
):
    """Approve a request; returns the newly scheduled session"""
    new_tutor_id = data.newTutorId if data else None
    note = data.note if data else None
    session = await service.approve_request(current_user, request_id, new_tutor_id, note)
    return SessionResponse.from_model(session)


@router.put("/{request_id}/reject", response_model=RescheduleResponse)
async def reject_reschedule_request(
    request_id: int,
    data: RescheduleReject,
    current_user: User = Depends(require_roles("staff", "admin")),
    service: RescheduleService = Depends(get_reschedule_service),
):
    return RescheduleResponse.from_model(await service.reject_request(current_user, request_id, data.reason))


@router.put("/{request_id}/cancel-and-refund", response_model=WalletTransactionResponse)
async def cancel_session_and_refund(
    request_id: int,
    current_user: User = Depends(require_roles("staff", "admin")),
    service: RescheduleService = Depends(get_reschedule_service),
):
    """Cancel the requested session and refund one session's price to the parent's wallet"""
    refund = await service.cancel_session_and_refund(current_user, request_id)
    return WalletTransactionResponse.from_model(refund)
