"""Slot conflict checks for appointment booking.

These checks are advisory. The partial unique indexes on ``appointments``
decide when two bookings race past them.
"""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ...models import ACTIVE_APPOINTMENT_STATUSES, Appointment


def _active_slot_query(db: Session, day: date, hhmm: str, exclude_appointment_id: Optional[int]):
    query = db.query(Appointment.id).filter(
        Appointment.appointment_date == day,
        Appointment.appointment_time == hhmm,
        Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)
    return query


def is_slot_available(
    db: Session, doctor_id: int, day: date, hhmm: str, exclude_appointment_id: Optional[int] = None
) -> bool:
    """False when the doctor already holds a pending or confirmed appointment at (day, hhmm)"""
    query = _active_slot_query(db, day, hhmm, exclude_appointment_id).filter(
        Appointment.doctor_id == doctor_id
    )
    return query.first() is None


def has_patient_conflict(
    db: Session, patient_id: int, day: date, hhmm: str, exclude_appointment_id: Optional[int] = None
) -> bool:
    """True when the patient already holds a pending or confirmed appointment at (day, hhmm)"""
    query = _active_slot_query(db, day, hhmm, exclude_appointment_id).filter(
        Appointment.patient_id == patient_id
    )
    return query.first() is not None


def get_booked_slots(db: Session, doctor_id: int, day: date) -> list[str]:
    """Sorted "HH:MM" times held by the doctor's active appointments on ``day``"""
    rows = (
        db.query(Appointment.appointment_time)
        .filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == day,
            Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
        )
        .distinct()
        .all()
    )
    return sorted(row[0] for row in rows)
