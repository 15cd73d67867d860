"""Database models."""

from app.models.appointments import appointment_history, appointments
from app.models.patients import patients

__all__ = [
    "appointment_history",
    "appointments",
    "patients",
]
