"""Session router - FastAPI endpoints for sessions and reminder runs"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_roles
from ...database import get_db
from ...models import User
from ..notifications.dispatcher import NotificationDispatcher, get_dispatcher
from .schemas import (
    ReminderRunResponse,
    ReplacementTutor,
    SessionResponse,
    SessionStatusUpdate,
    SessionTutorChange,
)
from .service import SessionService

router = APIRouter(prefix="/sessions", tags=["Sessions"])


def get_session_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> SessionService:
    """Dependency injection for SessionService"""
    return SessionService(db, dispatcher)


@router.get("/parent", response_model=list[SessionResponse])
async def get_parent_sessions(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    current_user: User = Depends(require_roles("parent")),
    service: SessionService = Depends(get_session_service),
):
    return [SessionResponse.from_model(s) for s in service.get_sessions_for_parent(current_user, start, end)]


@router.get("/tutor", response_model=list[SessionResponse])
async def get_tutor_sessions(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    current_user: User = Depends(require_roles("tutor")),
    service: SessionService = Depends(get_session_service),
):
    return [SessionResponse.from_model(s) for s in service.get_sessions_for_tutor(current_user, start, end)]


@router.post("/reminders", response_model=ReminderRunResponse)
async def run_reminders(
    hours_ahead: int = Query(24, ge=1, le=168, alias="hoursAhead"),
    _staff: User = Depends(require_roles("staff", "admin")),
    service: SessionService = Depends(get_session_service),
):
    """Trigger a reminder run; meant for a scheduler hitting the API"""
    sent = await service.send_reminders(hours_ahead)
    return ReminderRunResponse(hoursAhead=hours_ahead, remindersSent=sent)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: int,
    current_user: User = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return SessionResponse.from_model(service.get_session(current_user, session_id))


@router.put("/{session_id}/status", response_model=SessionResponse)
async def update_session_status(
    session_id: int,
    data: SessionStatusUpdate,
    current_user: User = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return SessionResponse.from_model(service.update_status(current_user, session_id, data.status))


@router.get("/{session_id}/replacement-tutors", response_model=list[ReplacementTutor])
async def get_replacement_tutors(
    session_id: int,
    _staff: User = Depends(require_roles("staff", "admin")),
    service: SessionService = Depends(get_session_service),
):
    """Free contract substitutes, or other free tutors when no substitute is"""
    return [
        ReplacementTutor(
            tutorId=t.id,
            fullName=t.full_name,
            email=t.email,
            phoneNumber=t.phone_number,
            isSubstitute=is_substitute,
        )
        for t, is_substitute in service.get_replacement_tutors(session_id)
    ]


@router.put("/{session_id}/tutor", response_model=SessionResponse)
async def change_session_tutor(
    session_id: int,
    data: SessionTutorChange,
    current_user: User = Depends(require_roles("staff", "admin")),
    service: SessionService = Depends(get_session_service),
):
    session = await service.change_session_tutor(current_user, session_id, data.newTutorId)
    return SessionResponse.from_model(session)
