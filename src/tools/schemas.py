"""Pydantic argument schemas for the appointment tools.

The model's tool-call arguments are validated against these before a tool
runs.  A mismatch never reaches Firestore: LangGraph's ``ToolNode`` turns
the ``ValidationError`` into an error tool result so the model can retry.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, Field, field_validator, model_validator

from src.services.appointments import to_clinic_time


def _parse_iso(value):
    """Accept ISO 8601 strings (``Z`` suffix included) and datetimes."""
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("an ISO 8601 date is required")
        try:
            value = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError(
                f"{value!r} is not an ISO 8601 date (expected e.g. 2025-10-25T10:00:00)"
            ) from exc
    if isinstance(value, datetime):
        return to_clinic_time(value)
    return value


# Naive values are read as clinic local time; aware values are converted to it.
IsoDatetime = Annotated[datetime, BeforeValidator(_parse_iso)]


class _NonBlankStrings(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def _strip(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("must not be blank")
        return value


class CreateAppointmentInput(_NonBlankStrings):
    patient_name: str = Field(description="Patient's full name")
    identification_number: str = Field(description="Patient's national ID (cédula) or DNI")
    phone_number: str = Field(description="Contact phone number")
    reason: str = Field(description="Reason for the visit")
    date: IsoDatetime = Field(
        description="Appointment date and time in ISO format (e.g. 2025-10-25T10:00:00)",
    )


class FindByIdentificationInput(_NonBlankStrings):
    identification_number: str = Field(description="Patient's national ID (cédula) or DNI")


class FindByDayInput(_NonBlankStrings):
    date: IsoDatetime = Field(description="Day to check, ISO format (e.g. 2025-10-25)")


class CancelAppointmentInput(_NonBlankStrings):
    appointment_id: str = Field(description="Unique appointment ID (e.g. '8f9s8d...')")


class ModifyAppointmentInput(_NonBlankStrings):
    appointment_id: str = Field(description="Unique ID of the appointment to modify")
    new_date: IsoDatetime | None = Field(
        default=None,
        description="New date and time in ISO format, only if it changes",
    )
    new_reason: str | None = Field(default=None, description="New reason, only if it changes")

    @model_validator(mode="after")
    def _require_a_change(self):
        if self.new_date is None and self.new_reason is None:
            raise ValueError("provide new_date and/or new_reason")
        return self
