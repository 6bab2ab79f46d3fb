# attendance_backend/api/schemas/attendance_record.py
from pydantic import BaseModel, Field, AliasChoices
from uuid import UUID
from datetime import datetime
from typing import Optional

from ...models.db_models import AttendanceStatus, Location, VerificationMethod
from ...services.attendance_service import EnrichedAttendanceRecord
from .session import CAMEL_CONFIG


class LocationSchema(BaseModel):
    """Device position sent with a check-in. Accepts both `lat/lon` and `latitude/longitude`."""
    latitude: float = Field(..., ge=-90, le=90, validation_alias=AliasChoices("lat", "latitude"))
    longitude: float = Field(..., ge=-180, le=180, validation_alias=AliasChoices("lon", "lng", "longitude"))

    def to_domain(self) -> Location:
        return Location(latitude=self.latitude, longitude=self.longitude)


class MarkAttendanceRequest(BaseModel):
    """Request model for a student's check-in."""
    session_code: str = Field(..., min_length=1, max_length=16, description="Case-insensitive session code.")
    location: Optional[LocationSchema] = None
    device_id: Optional[str] = Field(None, max_length=255)

    model_config = CAMEL_CONFIG


class ManualAttendanceRequest(BaseModel):
    """Request model for a lecturer marking a student without a check-in."""
    student_id: UUID
    course_id: UUID
    status: AttendanceStatus = AttendanceStatus.PRESENT
    session_id: Optional[UUID] = None

    model_config = CAMEL_CONFIG


class AttendanceRecordResponse(BaseModel):
    """Response model for an attendance record, enriched with display names."""
    id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    course_id: UUID
    course_name: Optional[str] = None
    session_id: Optional[UUID] = None
    date: datetime
    status: AttendanceStatus
    verification_method: VerificationMethod
    device_id: Optional[str] = None

    model_config = CAMEL_CONFIG

    @classmethod
    def from_record(cls, record: EnrichedAttendanceRecord) -> "AttendanceRecordResponse":
        return cls.model_validate(record.model_dump())
