"""LangChain tools for managing clinic appointments in Firestore.

Each tool wraps one AppointmentStore method and returns a plain-text string
that the LLM can use to formulate its answer to the patient.  Storage
errors are returned as text too, so the model can retry or apologise.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from langchain_core.tools import tool

from src.services.appointments import (
    Appointment,
    AppointmentStatus,
    AppointmentStoreError,
    get_appointment_store,
    to_clinic_time,
)
from src.tools.schemas import (
    CancelAppointmentInput,
    CreateAppointmentInput,
    FindByDayInput,
    FindByIdentificationInput,
    ModifyAppointmentInput,
)

logger = logging.getLogger(__name__)


def _format_dt(value: datetime) -> str:
    """Render a datetime as '25/10/2025 10:00' in clinic time."""
    return to_clinic_time(value).strftime("%d/%m/%Y %H:%M")


def _format_day(value: datetime) -> str:
    return to_clinic_time(value).strftime("%d/%m/%Y")


# ── Tool 1: Book a new appointment ──────────────────────────────────


@tool("create_appointment", args_schema=CreateAppointmentInput)
def create_appointment(
    patient_name: str,
    identification_number: str,
    phone_number: str,
    reason: str,
    date: datetime,
) -> str:
    """Save a NEW appointment.

    Use it ONLY when the patient has confirmed every detail (name, ID
    number, phone, date/time and reason) and wants a new appointment.
    Do NOT use it to look up an existing appointment (use
    find_appointments_by_identification) and check availability with
    find_appointments_by_day first.
    """
    appointment = Appointment(
        patient_name=patient_name,
        identification_number=identification_number,
        phone_number=phone_number,
        reason=reason,
        date=date,
        status=AppointmentStatus.PENDING,
    )
    try:
        appointment_id = get_appointment_store().create(appointment)
    except AppointmentStoreError as e:
        logger.error("Failed to create appointment: %s", e)
        return f"Error: the appointment could not be booked ({e}). Please try again."

    return (
        f"Appointment booked successfully. Reference ID: {appointment_id}.\n"
        f"  Patient: {patient_name}\n"
        f"  Date: {_format_dt(date)}\n"
        f"  Reason: {reason}\n"
        f"  Status: {AppointmentStatus.PENDING.value}"
    )


# ── Tool 2: Appointment history by ID number ────────────────────────


@tool("find_appointments_by_identification", args_schema=FindByIdentificationInput)
def find_appointments_by_identification(identification_number: str) -> str:
    """Look up a patient's appointments (with their IDs) by national ID / DNI number."""
    try:
        appointments = get_appointment_store().find_by_identification(identification_number)
    except AppointmentStoreError as e:
        logger.error("Failed to find appointments: %s", e)
        return f"Error: the appointment history could not be read ({e}). Please try again."

    if not appointments:
        return f"No appointments found for identification number {identification_number}."

    records = [
        {
            "id": a.id,
            "patientName": a.patient_name,
            "identificationNumber": a.identification_number,
            "phoneNumber": a.phone_number,
            "date": _format_dt(a.date),
            "reason": a.reason,
            "status": a.status,
        }
        for a in appointments
    ]
    return json.dumps(records, ensure_ascii=False)


# ── Tool 3: Occupied times on a day ─────────────────────────────────


@tool("find_appointments_by_day", args_schema=FindByDayInput)
def find_appointments_by_day(date: datetime) -> str:
    """Check which times are already taken on a given day before booking."""
    try:
        appointments = get_appointment_store().find_by_day(date)
    except AppointmentStoreError as e:
        logger.error("Failed to read the schedule: %s", e)
        return f"Error: the schedule could not be read ({e}). Please try again."

    occupied = [a for a in appointments if a.status != AppointmentStatus.CANCELLED]
    if not occupied:
        return f"The schedule for {_format_day(date)} is free. Any time within opening hours can be booked."

    times = ", ".join(to_clinic_time(a.date).strftime("%H:%M") for a in occupied)
    return f"Occupied times on {_format_day(date)}: {times}."


# ── Tool 4: Cancel (soft delete) ────────────────────────────────────


@tool("cancel_appointment", args_schema=CancelAppointmentInput)
def cancel_appointment(appointment_id: str) -> str:
    """Cancel an existing appointment using its unique ID."""
    try:
        get_appointment_store().cancel(appointment_id)
    except AppointmentStoreError as e:
        logger.error("Failed to cancel appointment %s: %s", appointment_id, e)
        return f"Error: the appointment could not be cancelled ({e}). Check the ID."

    return f"Appointment {appointment_id} cancelled successfully."


# ── Tool 5: Modify date and/or reason ───────────────────────────────


@tool("modify_appointment", args_schema=ModifyAppointmentInput)
def modify_appointment(
    appointment_id: str,
    new_date: datetime | None = None,
    new_reason: str | None = None,
) -> str:
    """Change the date/time and/or the reason of an existing appointment."""
    changes: dict[str, object] = {}
    summary: list[str] = []
    if new_date is not None:
        changes["date"] = new_date
        summary.append(f"date -> {_format_dt(new_date)}")
    if new_reason is not None:
        changes["reason"] = new_reason
        summary.append(f"reason -> {new_reason}")

    try:
        get_appointment_store().update(appointment_id, changes)
    except AppointmentStoreError as e:
        logger.error("Failed to modify appointment %s: %s", appointment_id, e)
        return f"Error: the appointment could not be modified ({e})."

    return f"Appointment {appointment_id} updated successfully ({'; '.join(summary)})."


# ── Registry ────────────────────────────────────────────────────────

ALL_TOOLS = [
    create_appointment,
    find_appointments_by_identification,
    find_appointments_by_day,
    cancel_appointment,
    modify_appointment,
]
