"""Pydantic schemas for booking holds and appointments."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _StartsAt(BaseModel):
    start_at: datetime
    duration_minutes: int = Field(..., ge=1, le=720)

    @field_validator("start_at")
    @classmethod
    def require_offset(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("start_at must include a timezone offset")
        return value


class HoldCreate(_StartsAt):
    contact_id: UUID | None = None


class AppointmentCreate(_StartsAt):
    contact_id: UUID | None = None


class HoldRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    contact_id: UUID | None
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    status: str
    expires_at: datetime


class AppointmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    contact_id: UUID | None
    hold_id: UUID | None
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    status: str
