"""Contract domain schemas - Pydantic models for validation"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from .session_generator import format_days_of_week


class ContractCreate(BaseModel):
    """Schema for creating a new contract"""

    packageId: int
    childName: Optional[str] = Field(None, max_length=255)
    mainTutorId: int
    substituteTutor1Id: Optional[int] = None
    substituteTutor2Id: Optional[int] = None
    daysOfWeek: int
    startDate: date
    endDate: date
    startTime: time
    endTime: time
    isOnline: bool = True
    offlineAddress: Optional[str] = Field(None, max_length=500)
    videoCallPlatform: Optional[str] = Field(None, max_length=50)


class ContractCancel(BaseModel):
    reason: Optional[str] = None


class ContractResponse(BaseModel):
    """Schema for contract response"""

    id: int
    publicId: str
    parentId: int
    childName: Optional[str]
    packageId: int
    packageName: Optional[str] = None
    price: Optional[Decimal] = None
    sessionCount: Optional[int] = None
    maxReschedule: Optional[int] = None
    mainTutorId: int
    substituteTutor1Id: Optional[int] = None
    substituteTutor2Id: Optional[int] = None
    daysOfWeek: int
    daysOfWeekDisplay: str
    startDate: date
    endDate: date
    startTime: time
    endTime: time
    isOnline: bool
    offlineAddress: Optional[str] = None
    videoCallPlatform: Optional[str] = None
    rescheduleCount: int
    status: str
    createdAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, contract) -> "ContractResponse":
        package = contract.package
        return cls(
            id=contract.id,
            publicId=contract.public_id,
            parentId=contract.parent_id,
            childName=contract.child_name,
            packageId=contract.package_id,
            packageName=package.package_name if package else None,
            price=package.price if package else None,
            sessionCount=package.session_count if package else None,
            maxReschedule=package.max_reschedule if package else None,
            mainTutorId=contract.main_tutor_id,
            substituteTutor1Id=contract.substitute_tutor1_id,
            substituteTutor2Id=contract.substitute_tutor2_id,
            daysOfWeek=contract.days_of_week,
            daysOfWeekDisplay=format_days_of_week(contract.days_of_week),
            startDate=contract.start_date,
            endDate=contract.end_date,
            startTime=contract.start_time,
            endTime=contract.end_time,
            isOnline=contract.is_online,
            offlineAddress=contract.offline_address,
            videoCallPlatform=contract.video_call_platform,
            rescheduleCount=contract.reschedule_count,
            status=contract.status,
            createdAt=contract.created_at,
        )
