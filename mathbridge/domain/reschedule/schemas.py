"""Reschedule domain schemas"""

from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, Field


class RescheduleCreate(BaseModel):
    sessionId: int
    requestedDate: date
    startTime: time
    endTime: time
    reason: Optional[str] = Field(None, max_length=1000)


class RescheduleApprove(BaseModel):
    newTutorId: Optional[int] = None
    note: Optional[str] = Field(None, max_length=1000)


class RescheduleReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class RescheduleResponse(BaseModel):
    id: int
    sessionId: int
    contractId: int
    parentId: int
    requestedDate: date
    startTime: time
    endTime: time
    requestedTutorId: Optional[int] = None
    reason: Optional[str] = None
    status: str
    staffId: Optional[int] = None
    processedAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, request) -> "RescheduleResponse":
        return cls(
            id=request.id,
            sessionId=request.session_id,
            contractId=request.contract_id,
            parentId=request.parent_id,
            requestedDate=request.requested_date,
            startTime=request.start_time,
            endTime=request.end_time,
            requestedTutorId=request.requested_tutor_id,
            reason=request.reason,
            status=request.status,
            staffId=request.staff_id,
            processedAt=request.processed_at,
            createdAt=request.created_at,
        )


class AvailableTutor(BaseModel):
    tutorId: int
    fullName: Optional[str] = None
    email: str
    phoneNumber: Optional[str] = None
