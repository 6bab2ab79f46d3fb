# attendance_backend/api/schemas/user.py
from uuid import UUID
from pydantic import BaseModel, field_validator

from ...models.db_models import UserRole


# Internal representation of JWT data
class TokenData(BaseModel):
    sub: UUID
    role: UserRole

    @field_validator("role", mode="before")
    def normalize_role(cls, v):
        return v.upper() if isinstance(v, str) else v
