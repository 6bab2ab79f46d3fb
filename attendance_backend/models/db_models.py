# attendance_backend/models/db_models.py

from enum import Enum
from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import Optional
from uuid import UUID


class SessionType(str, Enum):
    PHYSICAL = "PHYSICAL"
    ONLINE = "ONLINE"


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LATE = "LATE"


class VerificationMethod(str, Enum):
    MANUAL = "MANUAL"
    QR_CODE = "QR_CODE"
    GEOLOCATION = "GEOLOCATION"
    BIOMETRIC = "BIOMETRIC"
    WEBCAM = "WEBCAM"
    OTP = "OTP"


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    LECTURER = "LECTURER"
    ADMIN = "ADMIN"


class User(BaseModel):
    """
    A user owned by the external user directory. Only the fields the attendance
    flow needs are mapped from the 'users' table.
    """
    id: UUID
    name: str
    role: UserRole


class Course(BaseModel):
    """
    A course owned by the external course directory, mapping to the 'courses' table.
    """
    id: UUID
    name: str
    lecturer_id: UUID = Field(..., description="The lecturer who owns the course")


class Caller(BaseModel):
    """Identity of whoever is invoking a core operation, taken from the bearer token."""
    user_id: UUID
    role: UserRole


class GeoFence(BaseModel):
    # Ranges are checked by the service when a session is created, not here.
    latitude: float
    longitude: float
    radius_meters: float


class Location(BaseModel):
    """A position reported by a student's device during check-in."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class AttendanceSession(BaseModel):
    """
    Represents an attendance session, mapping to the 'attendance_sessions' table.
    """
    id: UUID = Field(..., description="Unique identifier for the attendance session")
    course_id: UUID
    lecturer_id: UUID = Field(..., description="The lecturer who created the session")
    session_code: str = Field(..., description="Short code students type or scan, stored upper-cased")
    session_type: SessionType
    created_at: datetime
    expires_at: datetime
    geo_fence: Optional[GeoFence] = None

    @model_validator(mode="after")
    def check_expiry_after_creation(self):
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    @classmethod
    def from_row(cls, row) -> "AttendanceSession":
        geo_fence = None
        if row["latitude"] is not None and row["longitude"] is not None and row["radius_meters"] is not None:
            geo_fence = GeoFence(
                latitude=row["latitude"],
                longitude=row["longitude"],
                radius_meters=row["radius_meters"],
            )
        return cls(
            id=row["id"],
            course_id=row["course_id"],
            lecturer_id=row["lecturer_id"],
            session_code=row["session_code"],
            session_type=SessionType(row["session_type"]),
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            geo_fence=geo_fence,
        )


class AttendanceRecord(BaseModel):
    """
    Represents a single student's attendance, mapping to the 'attendance_records' table.
    """
    id: UUID
    student_id: UUID
    course_id: UUID
    session_id: Optional[UUID] = Field(None, description="Empty for manual marks made without a session")
    date: datetime
    status: AttendanceStatus = AttendanceStatus.PRESENT
    verification_method: VerificationMethod = VerificationMethod.QR_CODE
    device_id: Optional[str] = None
    location_latitude: Optional[float] = None
    location_longitude: Optional[float] = None

    @classmethod
    def from_row(cls, row) -> "AttendanceRecord":
        return cls(
            id=row["id"],
            student_id=row["student_id"],
            course_id=row["course_id"],
            session_id=row["session_id"],
            date=row["date"],
            status=AttendanceStatus(row["status"]),
            verification_method=VerificationMethod(row["verification_method"]),
            device_id=row["device_id"],
            location_latitude=row["location_latitude"],
            location_longitude=row["location_longitude"],
        )
