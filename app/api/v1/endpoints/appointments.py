"""Appointment endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import Appointments, CurrentUserId, Lifecycle
from app.schemas.appointments import (
    AgendaResponse,
    AppointmentCreate,
    AppointmentHistoryResponse,
    AppointmentResponse,
    AppointmentTransitionRequest,
    AppointmentTransitionResponse,
    AppointmentUpdate,
    CheckInWindowResponse,
)

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    current_user_id: CurrentUserId,
    service: Appointments,
) -> AppointmentResponse:
    """
    Book a new appointment in PROGRAMADA.

    Args:
        data: Appointment creation data
        current_user_id: Authenticated staff user
        service: Appointment service

    Returns:
        Created appointment
    """
    return await service.create_appointment(data)


@router.get(
    "/agenda",
    response_model=AgendaResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Day agenda",
)
async def get_agenda(
    current_user_id: CurrentUserId,
    service: Appointments,
    day: date | None = Query(None, description="Clinic-zone date, defaults to today"),
    doctor_id: UUID | None = Query(None),
) -> AgendaResponse:
    """
    List the appointments of one clinic day.

    Args:
        current_user_id: Authenticated staff user
        service: Appointment service
        day: Clinic-zone date
        doctor_id: Filter by doctor ID

    Returns:
        Appointments of the day ordered by time
    """
    return await service.get_agenda(day, doctor_id)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    current_user_id: CurrentUserId,
    service: Appointments,
) -> AppointmentResponse:
    """Get a specific appointment by ID."""
    return await service.get_appointment(appointment_id)


@router.patch(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Edit appointment details",
)
async def update_appointment(
    appointment_id: UUID,
    data: AppointmentUpdate,
    current_user_id: CurrentUserId,
    service: Appointments,
) -> AppointmentResponse:
    """
    Edit time, doctor, reasons, notes or first-visit flag.

    Status cannot be changed here; use the status endpoint.

    Args:
        appointment_id: Appointment ID
        data: Partial update data
        current_user_id: Authenticated staff user
        service: Appointment service

    Returns:
        Updated appointment
    """
    return await service.update_appointment(appointment_id, data)


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentTransitionResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Change appointment status",
)
async def change_appointment_status(
    appointment_id: UUID,
    data: AppointmentTransitionRequest,
    current_user_id: CurrentUserId,
    manager: Lifecycle,
) -> AppointmentTransitionResponse:
    """
    Move an appointment to a new status.

    Args:
        appointment_id: Appointment ID
        data: Requested status and its payload
        current_user_id: Authenticated staff user
        manager: Lifecycle manager

    Returns:
        Updated appointment with ``_meta`` describing the transition
    """
    extra = {}
    if "doctor_id" in data.model_fields_set:
        extra["doctor_id"] = data.doctor_id

    return await manager.request_transition(
        appointment_id,
        data.new_status,
        current_user_id,
        new_scheduled_at=data.new_scheduled_at,
        reason=data.reason,
        notes=data.notes,
        **extra,
    )


@router.get(
    "/{appointment_id}/history",
    response_model=AppointmentHistoryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Appointment status history",
)
async def get_appointment_history(
    appointment_id: UUID,
    current_user_id: CurrentUserId,
    service: Appointments,
) -> AppointmentHistoryResponse:
    """
    Get the status history of an appointment, most recent first.

    Args:
        appointment_id: Appointment ID
        current_user_id: Authenticated staff user
        service: Appointment service

    Returns:
        History entries with a summary of the appointment
    """
    return await service.get_history(appointment_id)


@router.get(
    "/{appointment_id}/check-in",
    response_model=CheckInWindowResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Check-in window",
)
async def get_check_in_window(
    appointment_id: UUID,
    current_user_id: CurrentUserId,
    service: Appointments,
) -> CheckInWindowResponse:
    """Classify the check-in window and list the actions available now."""
    return await service.get_check_in_window(appointment_id)
