# attendance_backend/api/schemas/session.py
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from uuid import UUID
from datetime import datetime
from typing import Optional

from ...models.db_models import GeoFence, SessionType
from ...services.attendance_service import EnrichedAttendanceSession

CAMEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GeoFenceSchema(BaseModel):
    """Center coordinate and radius of the area where physical check-in is accepted."""
    latitude: float
    longitude: float
    radius_meters: float = Field(..., description="Radius of the attendance area in meters.")

    model_config = CAMEL_CONFIG

    def to_domain(self) -> GeoFence:
        return GeoFence(**self.model_dump())


class SessionCreateRequest(BaseModel):
    """Request model for creating a new attendance session."""
    course_id: UUID
    session_type: SessionType = Field(..., description="PHYSICAL or ONLINE (case-insensitive).")
    duration_minutes: int = Field(..., description="How long the session accepts check-ins.")
    geo_fence: Optional[GeoFenceSchema] = Field(None, description="Required for PHYSICAL sessions.")

    model_config = CAMEL_CONFIG

    @field_validator("session_type", mode="before")
    def normalize_session_type(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class SessionUpdateRequest(BaseModel):
    """Request model for extending a session or moving its geofence."""
    duration_minutes: Optional[int] = Field(None, description="New duration, counted from now.")
    geo_fence: Optional[GeoFenceSchema] = None

    model_config = CAMEL_CONFIG


class SessionResponse(BaseModel):
    """Response model for an attendance session."""
    id: UUID
    course_id: UUID
    lecturer_id: UUID
    session_code: str
    session_type: SessionType
    created_at: datetime
    expires_at: datetime
    geo_fence: Optional[GeoFenceSchema] = None
    course_name: Optional[str] = None
    lecturer_name: Optional[str] = None

    model_config = CAMEL_CONFIG

    @classmethod
    def from_session(cls, session: EnrichedAttendanceSession) -> "SessionResponse":
        return cls.model_validate(session.model_dump())
