"""Session domain schemas"""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel


class SessionResponse(BaseModel):
    id: int
    contractId: int
    tutorId: int
    sessionDate: date
    startTime: datetime
    endTime: datetime
    isOnline: bool
    offlineAddress: Optional[str] = None
    videoCallPlatform: Optional[str] = None
    status: str

    @classmethod
    def from_model(cls, session) -> "SessionResponse":
        return cls(
            id=session.id,
            contractId=session.contract_id,
            tutorId=session.tutor_id,
            sessionDate=session.session_date,
            startTime=session.start_time,
            endTime=session.end_time,
            isOnline=session.is_online,
            offlineAddress=session.offline_address,
            videoCallPlatform=session.video_call_platform,
            status=session.status,
        )


class SessionStatusUpdate(BaseModel):
    status: Literal["completed", "cancelled"]


class ReminderRunResponse(BaseModel):
    hoursAhead: int
    remindersSent: int


class SessionTutorChange(BaseModel):
    newTutorId: int


class ReplacementTutor(BaseModel):
    tutorId: int
    fullName: Optional[str] = None
    email: str
    phoneNumber: Optional[str] = None
    isSubstitute: bool
