"""Appointment schemas for request/response validation."""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, AwareDatetime, BaseModel, Field, field_validator, model_validator


class AppointmentStatus(str, Enum):
    """Appointment lifecycle status."""

    PROGRAMADA = "PROGRAMADA"
    CONFIRMADA = "CONFIRMADA"
    PRESENTE = "PRESENTE"
    COMPLETADA = "COMPLETADA"
    CANCELADA = "CANCELADA"
    REAGENDADA = "REAGENDADA"
    NO_ASISTIO = "NO_ASISTIO"


class CheckInState(str, Enum):
    """Classification of a check-in attempt."""

    TOO_EARLY = "TOO_EARLY"
    OPEN = "OPEN"
    EXPIRED = "EXPIRED"


def _as_utc(value: datetime | None) -> datetime | None:
    """Read naive store timestamps as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _dedupe_reasons(value: list[str]) -> list[str]:
    """Strip reason codes and drop repeats, keeping first-seen order."""
    cleaned: list[str] = []
    for reason in value:
        reason = reason.strip()
        if not reason:
            raise ValueError("Reason codes cannot be blank")
        if reason not in cleaned:
            cleaned.append(reason)
    return cleaned


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment."""

    patient_id: UUID
    doctor_id: UUID | None = None
    scheduled_at: AwareDatetime
    reasons: list[str] = Field(..., min_length=1, max_length=20)
    is_first_visit: bool = False
    notes: str | None = Field(None, max_length=1000)

    @field_validator("reasons")
    @classmethod
    def validate_reasons(cls, v: list[str]) -> list[str]:
        """Reasons are a non-empty ordered set."""
        return _dedupe_reasons(v)


class AppointmentUpdate(BaseModel):
    """
    Schema for editing non-status fields.

    ``status`` is accepted only so the service can reject it explicitly.
    """

    doctor_id: UUID | None = None
    scheduled_at: AwareDatetime | None = None
    reasons: list[str] | None = Field(None, min_length=1, max_length=20)
    is_first_visit: bool | None = None
    notes: str | None = Field(None, max_length=1000)
    status: Any = Field(
        None,
        validation_alias=AliasChoices("status", "new_status", "estado_cita"),
    )

    @field_validator("reasons")
    @classmethod
    def validate_reasons(cls, v: list[str] | None) -> list[str]:
        """Reasons are a non-empty ordered set; they can be replaced but not removed."""
        if v is None:
            raise ValueError("reasons cannot be null")
        return _dedupe_reasons(v)

    @field_validator("is_first_visit")
    @classmethod
    def validate_is_first_visit(cls, v: bool | None) -> bool:
        """Omit the flag to keep it; an explicit null is not a value."""
        if v is None:
            raise ValueError("is_first_visit cannot be null")
        return v


class AppointmentTransitionRequest(BaseModel):
    """Schema for a status transition request."""

    # Plain string so unknown codes reach the transition validator
    new_status: str = Field(..., min_length=1, max_length=50)
    new_scheduled_at: AwareDatetime | None = None
    doctor_id: UUID | None = None
    reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def validate_status_payload(self) -> "AppointmentTransitionRequest":
        """Check fields that depend on the requested status."""
        requested = self.new_status.strip().upper()
        self.new_status = requested

        if requested == AppointmentStatus.REAGENDADA.value:
            if self.new_scheduled_at is None:
                raise ValueError("new_scheduled_at is required when rescheduling")
        elif self.new_scheduled_at is not None or "doctor_id" in self.model_fields_set:
            raise ValueError("new_scheduled_at and doctor_id are only accepted when rescheduling")

        if requested == AppointmentStatus.CANCELADA.value:
            if not (self.reason or "").strip():
                raise ValueError("reason is required when cancelling")
        return self


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID | None
    scheduled_at: datetime
    reasons: list[str]
    status: AppointmentStatus
    is_first_visit: bool
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("scheduled_at", "created_at", "updated_at")
    @classmethod
    def validate_aware(cls, v: datetime) -> datetime:
        """Always expose timezone-qualified instants."""
        return _as_utc(v)


class TransitionMeta(BaseModel):
    """Metadata describing an accepted transition."""

    previous_status: AppointmentStatus
    new_status: AppointmentStatus
    status_changed_at: datetime
    changed_by: UUID | None = None
    audit_trail_created: bool
    transition_validated: bool = True
    warnings: list[str] = Field(default_factory=list)


class AppointmentTransitionResponse(AppointmentResponse):
    """Updated appointment plus transition metadata."""

    meta: TransitionMeta = Field(..., serialization_alias="_meta")


class HistoryEntryResponse(BaseModel):
    """Schema for one appointment history entry."""

    id: UUID
    appointment_id: UUID
    previous_status: AppointmentStatus
    new_status: AppointmentStatus
    changed_at: datetime
    changed_by: UUID | None = None
    reason_note: str | None = None
    previous_scheduled_at: datetime | None = None
    new_scheduled_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("changed_at", "previous_scheduled_at", "new_scheduled_at")
    @classmethod
    def validate_aware(cls, v: datetime | None) -> datetime | None:
        """Always expose timezone-qualified instants."""
        return _as_utc(v)


class HistorySummary(BaseModel):
    """Summary block of the history response."""

    appointment_id: UUID
    current_status: AppointmentStatus
    scheduled_at: datetime
    scheduled_at_local: str
    patient_name: str | None = None
    total_changes: int


class AppointmentHistoryResponse(BaseModel):
    """Schema for the full appointment history."""

    summary: HistorySummary
    items: list[HistoryEntryResponse]


class CheckInWindowResponse(BaseModel):
    """Schema for check-in window classification."""

    appointment_id: UUID
    status: AppointmentStatus
    state: CheckInState
    minutes_until_open: int | None = None
    minutes_since_close: int | None = None
    window_opens_at: datetime
    window_closes_at: datetime
    is_today: bool
    available_actions: list[AppointmentStatus]


class AgendaResponse(BaseModel):
    """Schema for the appointments of one clinic day."""

    day: date
    doctor_id: UUID | None = None
    total: int
    items: list[AppointmentResponse]
