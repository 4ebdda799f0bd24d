"""Firestore-backed appointment storage.

Every method maps to one Firestore call against the ``appointments``
collection and raises :class:`AppointmentStoreError` when the database
rejects it, so the tool layer only has one exception type to translate
into text for the model.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, time
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo

from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from src.config import APPOINTMENTS_COLLECTION, CLINIC_TIMEZONE
from src.services.firestore import get_firestore_client
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

CLINIC_TZ = ZoneInfo(CLINIC_TIMEZONE)


class AppointmentStoreError(Exception):
    """Raised when a Firestore read or write for an appointment fails."""

    def __init__(self, message: str, appointment_id: str | None = None):
        self.appointment_id = appointment_id
        super().__init__(message)


class AppointmentStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Appointment(BaseModel):
    """One appointment document.

    Field names are camelCase in Firestore (``patientName``,
    ``identificationNumber``...) and snake_case in Python.  ``id`` is the
    Firestore document id and is never written into the document body.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    id: str | None = Field(default=None, exclude=True)
    patient_name: str
    identification_number: str
    phone_number: str
    date: datetime
    reason: str
    status: AppointmentStatus = AppointmentStatus.PENDING
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_document(self) -> dict[str, Any]:
        """Serialise to the Firestore document shape."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ── Clinic-time helpers ─────────────────────────────────────────────


def to_clinic_time(value: datetime) -> datetime:
    """Attach (naive) or convert (aware) *value* to the clinic time zone."""
    if value.tzinfo is None:
        return value.replace(tzinfo=CLINIC_TZ)
    return value.astimezone(CLINIC_TZ)


def day_bounds(value: datetime) -> tuple[datetime, datetime]:
    """Return the first and last instant of *value*'s clinic calendar day.

    The range is inclusive: 00:00:00.000 through 23:59:59.999.
    """
    local = to_clinic_time(value)
    start = datetime.combine(local.date(), time.min, tzinfo=CLINIC_TZ)
    end = datetime.combine(local.date(), time(23, 59, 59, 999_000), tzinfo=CLINIC_TZ)
    return start, end


def _now() -> datetime:
    return datetime.now(CLINIC_TZ)


class AppointmentStore:
    """Thin wrapper around the Firestore ``appointments`` collection."""

    def __init__(self, client=None, collection: str | None = None):
        self._client = client or get_firestore_client()
        self._collection_name = collection or APPOINTMENTS_COLLECTION

    @property
    def _collection(self):
        return self._client.collection(self._collection_name)

    @staticmethod
    def _from_snapshot(snapshot) -> Appointment:
        """Build an ``Appointment`` from a document snapshot.

        A document that does not match the model (missing fields, an
        unknown status...) fails the whole read rather than being dropped,
        so a day query never reports an occupied slot as free.
        """
        data = snapshot.to_dict() or {}
        try:
            return Appointment.model_validate({**data, "id": snapshot.id})
        except ValidationError as exc:
            logger.error("Malformed appointment document %s: %s", snapshot.id, exc)
            raise AppointmentStoreError(
                f"Appointment {snapshot.id} has invalid data and could not be read.",
                appointment_id=snapshot.id,
            ) from exc

    # ── Writes ───────────────────────────────────────────────────────

    def create(self, appointment: Appointment) -> str:
        """Insert *appointment* and return the generated document id."""
        document = appointment.model_copy(
            update={"created_at": appointment.created_at or _now()},
        ).to_document()
        try:
            with metrics.track("firestore", "appointments.add"):
                _, doc_ref = self._collection.add(document)
        except google_exceptions.GoogleAPICallError as exc:
            logger.error("Failed to save appointment for %s: %s", appointment.patient_name, exc)
            raise AppointmentStoreError("The appointment could not be saved.") from exc

        logger.info(
            "Appointment %s saved for %s (id number %s)",
            doc_ref.id, appointment.patient_name, appointment.identification_number,
        )
        return doc_ref.id

    def cancel(self, appointment_id: str) -> None:
        """Mark an appointment as cancelled (the document is kept)."""
        self.update(appointment_id, {"status": AppointmentStatus.CANCELLED.value})
        logger.info("Appointment %s marked as cancelled", appointment_id)

    def update(self, appointment_id: str, changes: dict[str, Any]) -> None:
        """Update only the supplied fields plus ``updatedAt``.

        *changes* uses Python field names (``date``, ``reason``, ``status``).
        """
        if not appointment_id or not appointment_id.strip():
            raise AppointmentStoreError("An appointment id is required.")

        document = {to_camel(key): value for key, value in changes.items()}
        document["updatedAt"] = _now()
        try:
            with metrics.track("firestore", "appointments.update"):
                self._collection.document(appointment_id.strip()).update(document)
        except google_exceptions.NotFound as exc:
            raise AppointmentStoreError(
                f"No appointment exists with id {appointment_id}.",
                appointment_id=appointment_id,
            ) from exc
        except google_exceptions.GoogleAPICallError as exc:
            logger.error("Failed to update appointment %s: %s", appointment_id, exc)
            raise AppointmentStoreError(
                "The appointment could not be updated.", appointment_id=appointment_id,
            ) from exc

    # ── Reads ────────────────────────────────────────────────────────

    def find_by_identification(self, identification_number: str) -> list[Appointment]:
        """Return every appointment registered under *identification_number*."""
        query = self._collection.where(
            filter=FieldFilter("identificationNumber", "==", identification_number),
        )
        try:
            with metrics.track("firestore", "appointments.by_identification"):
                snapshots = list(query.stream())
        except google_exceptions.GoogleAPICallError as exc:
            logger.error("Failed to query appointments for %s: %s", identification_number, exc)
            raise AppointmentStoreError("The appointment history could not be read.") from exc

        appointments = [self._from_snapshot(s) for s in snapshots]
        return sorted(appointments, key=lambda a: a.date)

    def find_by_day(self, day: datetime) -> list[Appointment]:
        """Return every appointment on *day*'s clinic calendar day."""
        start, end = day_bounds(day)
        query = (
            self._collection
            .where(filter=FieldFilter("date", ">=", start))
            .where(filter=FieldFilter("date", "<=", end))
        )
        try:
            with metrics.track("firestore", "appointments.by_day"):
                snapshots = list(query.stream())
        except google_exceptions.GoogleAPICallError as exc:
            logger.error("Failed to read the schedule for %s: %s", start.date(), exc)
            raise AppointmentStoreError("The schedule for that day could not be read.") from exc

        appointments = [self._from_snapshot(s) for s in snapshots]
        return sorted(appointments, key=lambda a: a.date)


# ── Module-level singleton (thread-safe) ────────────────────────────
_store: AppointmentStore | None = None
_store_lock = threading.Lock()


def get_appointment_store() -> AppointmentStore:
    """Return a module-level AppointmentStore singleton.

    Uses double-checked locking so that the lock is only acquired during
    the first initialisation, not on every subsequent call.
    """
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = AppointmentStore()
    return _store
