"""Appointment service - Business logic for the appointment lifecycle"""

import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import config
from ...models import ROLE_ADMIN, Account, Appointment, DoctorProfile
from ...services.notification_service import NotificationDispatcher
from ...services.sms_service import (
    appointment_cancellation_message,
    appointment_confirmation_message,
    appointment_reminder_message,
)
from ...shared.clock import app_now, slot_datetime, to_db_timestamp
from ...shared.errors import (
    CancellationCutoff,
    DoctorUnavailable,
    Forbidden,
    InvalidSchedule,
    InvalidTransition,
    NotFound,
    PatientConflict,
    ReviewExists,
    SlotTaken,
)
from . import slot_checker
from .repository import AppointmentRepository
from .schemas import AppointmentCreate, CompleteRequest

logger = logging.getLogger(__name__)

# Allowed status moves; statuses absent as keys or with no targets are terminal
TRANSITIONS = {
    "pending": {"confirmed", "cancelled", "rejected"},
    "confirmed": {"completed", "cancelled", "no_show"},
    "completed": set(),
    "cancelled": set(),
    "rejected": set(),
    "no_show": set(),
}

STATUS_PUSH_TITLES = {
    "confirmed": "Appointment confirmed",
    "rejected": "Appointment declined",
    "no_show": "Missed appointment",
    "completed": "Consultation completed",
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def _fmt_date(value) -> str:
    return value.strftime("%d/%m/%Y")


class AppointmentService:
    """Service layer for the appointment state machine"""

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.repo = AppointmentRepository()
        self.notifier = notifier or NotificationDispatcher()
        self.clock = clock or app_now

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _load(self, appointment_id: int) -> Appointment:
        appointment = self.repo.get_by_id(self.db, appointment_id)
        if not appointment:
            raise NotFound("Appointment not found")
        return appointment

    def _owning_doctor(self, appointment: Appointment, account: Account) -> DoctorProfile:
        doctor = self.repo.get_doctor_for_account(self.db, account.id)
        if not doctor or doctor.id != appointment.doctor_id:
            logger.warning(f"⚠️ Account {account.id} is not the doctor of appointment {appointment.id}")
            raise Forbidden("You are not the doctor for this appointment")
        return doctor

    def _actor_role(self, appointment: Appointment, actor: Account) -> str:
        """Role the actor plays on this appointment; Forbidden for outsiders"""
        if actor.role == ROLE_ADMIN:
            return ROLE_ADMIN
        if appointment.patient_id == actor.id:
            return "patient"
        doctor = self.repo.get_doctor_for_account(self.db, actor.id)
        if doctor and doctor.id == appointment.doctor_id:
            return "doctor"
        raise Forbidden("You do not have access to this appointment")

    def get_by_id(self, appointment_id: int, actor: Account) -> Appointment:
        appointment = self._load(appointment_id)
        self._actor_role(appointment, actor)
        return appointment

    def get_booked_slots(self, doctor_id: int, day) -> list[str]:
        return slot_checker.get_booked_slots(self.db, doctor_id, day)

    @staticmethod
    def _pagination(page: int, limit: int, total: int) -> dict:
        return {
            "currentPage": page,
            "totalPages": math.ceil(total / limit) if limit else 0,
            "totalAppointments": total,
            "hasNext": page * limit < total,
            "hasPrev": page > 1,
        }

    def list_for_doctor(
        self, actor: Account, status: Optional[str] = None, day=None, page: int = 1, limit: int = 20
    ) -> dict:
        doctor = self.repo.get_doctor_for_account(self.db, actor.id)
        if not doctor:
            raise NotFound("Doctor profile not found")
        items, total = self.repo.list_for_doctor(self.db, doctor.id, status, day, (page - 1) * limit, limit)
        return {"appointments": items, "pagination": self._pagination(page, limit, total)}

    def list_for_patient(
        self, actor: Account, status: Optional[str] = None, page: int = 1, limit: int = 20
    ) -> dict:
        items, total = self.repo.list_for_patient(self.db, actor.id, status, (page - 1) * limit, limit)
        return {"appointments": items, "pagination": self._pagination(page, limit, total)}

    def list_all(
        self,
        status: Optional[str] = None,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        day=None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        """Administrator overview across all doctors and patients"""
        items, total = self.repo.list_all(
            self.db, status, doctor_id, patient_id, day, (page - 1) * limit, limit
        )
        return {"appointments": items, "pagination": self._pagination(page, limit, total)}

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    def create(self, patient: Account, data: AppointmentCreate) -> Appointment:
        """Book a pending appointment after availability and conflict checks"""
        logger.info(
            f"📥 Booking request: patient={patient.id} doctor={data.doctorId} "
            f"slot={data.appointmentDate} {data.appointmentTime}"
        )

        if not patient.is_phone_verified:
            raise Forbidden("Please verify your phone number first")

        doctor = self.repo.get_doctor(self.db, data.doctorId)
        if not doctor:
            raise NotFound("Doctor not found")
        if doctor.verification_status != "approved" or not doctor.is_active or not doctor.is_available:
            raise DoctorUnavailable()

        if slot_datetime(data.appointmentDate, data.appointmentTime) <= self.clock():
            raise InvalidSchedule()

        if not slot_checker.is_slot_available(self.db, doctor.id, data.appointmentDate, data.appointmentTime):
            logger.warning(f"⚠️ Slot taken: doctor={doctor.id} {data.appointmentDate} {data.appointmentTime}")
            raise SlotTaken()
        if slot_checker.has_patient_conflict(self.db, patient.id, data.appointmentDate, data.appointmentTime):
            raise PatientConflict()

        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            appointment_date=data.appointmentDate,
            appointment_time=data.appointmentTime,
            status="pending",
            consultation_type=data.consultationType,
            reason=data.reason,
            symptoms=data.symptoms,
            patient_notes=data.patientNotes,
            payment_amount=doctor.consultation_fee,
            payment_currency=doctor.currency or config.DEFAULT_CURRENCY,
            payment_status="pending",
            created_by="patient",
        )

        try:
            self.db.add(appointment)
            self.db.flush()
            self.repo.add_history(self.db, appointment.id, "pending", patient, "patient", "Appointment booked")
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            # Lost the race for the slot: the unique index rejected the second booking
            if "patient" in str(e.orig).lower():
                logger.warning(f"⚠️ Patient {patient.id} double-booked {data.appointmentDate} {data.appointmentTime}")
                raise PatientConflict() from e
            logger.warning(f"⚠️ Concurrent booking lost for doctor {doctor.id} at {data.appointmentTime}")
            raise SlotTaken() from e

        self.db.refresh(appointment)
        logger.info(f"✅ Appointment {appointment.id} booked for patient {patient.id}")

        doctor_account = doctor.account
        clinic = doctor.clinic or {}
        self.notifier.sms(
            patient.phone,
            appointment_confirmation_message(
                doctor_account.full_name,
                _fmt_date(appointment.appointment_date),
                appointment.appointment_time,
                clinic.get("name", ""),
                (clinic.get("address") or {}).get("street", ""),
            ),
        )
        self.notifier.push(
            doctor_account.fcm_tokens,
            "New appointment",
            f"{patient.full_name} booked {_fmt_date(appointment.appointment_date)} at {appointment.appointment_time}",
            {"type": "NEW_APPOINTMENT", "appointmentId": appointment.id},
        )
        return appointment

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _ensure_transition(self, appointment: Appointment, target: str):
        if not can_transition(appointment.status, target):
            logger.warning(f"⚠️ Appointment {appointment.id}: {appointment.status} -> {target} refused")
            raise InvalidTransition(f"Cannot change status from '{appointment.status}' to '{target}'")

    def _transition(
        self,
        appointment: Appointment,
        target: str,
        actor: Account,
        actor_role: str,
        notes: Optional[str],
        **values,
    ):
        """Compare-and-set the status and append the history entry (uncommitted)"""
        updated = self.repo.update_if_status(self.db, appointment.id, appointment.status, status=target, **values)
        if not updated:
            self.db.rollback()
            raise InvalidTransition("The appointment was modified concurrently, please retry")
        self.repo.add_history(self.db, appointment.id, target, actor, actor_role, notes)

    def set_status(
        self, appointment_id: int, doctor_account: Account, new_status: str, notes: Optional[str] = None
    ) -> Appointment:
        appointment = self._load(appointment_id)
        self._owning_doctor(appointment, doctor_account)
        self._ensure_transition(appointment, new_status)

        if new_status == "cancelled":
            return self._cancel(appointment, doctor_account, "doctor", notes)
        if new_status == "completed":
            return self._complete(appointment, doctor_account, None, notes)

        try:
            self._transition(
                appointment,
                new_status,
                doctor_account,
                "doctor",
                notes or f"Status updated to '{new_status}' by the doctor",
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info(f"✅ Appointment {appointment.id} is now {new_status}")
        self._notify_patient_status(appointment)
        return appointment

    def confirm(self, appointment_id: int, doctor_account: Account) -> Appointment:
        return self.set_status(appointment_id, doctor_account, "confirmed")

    def cancel(self, appointment_id: int, actor: Account, reason: Optional[str] = None) -> Appointment:
        appointment = self._load(appointment_id)
        role = self._actor_role(appointment, actor)
        self._ensure_transition(appointment, "cancelled")
        return self._cancel(appointment, actor, role, reason)

    def _cancel(self, appointment: Appointment, actor: Account, role: str, reason: Optional[str]) -> Appointment:
        now = self.clock()
        starts_at = slot_datetime(appointment.appointment_date, appointment.appointment_time)
        if role != ROLE_ADMIN and starts_at <= now + timedelta(hours=config.CANCELLATION_CUTOFF_HOURS):
            logger.warning(f"⚠️ Cancellation of appointment {appointment.id} refused inside the cutoff")
            raise CancellationCutoff()

        reason = reason[:200] if reason else None
        try:
            self._transition(
                appointment,
                "cancelled",
                actor,
                role,
                reason or f"Cancelled by {role}",
                cancelled_by=role,
                cancelled_by_id=actor.id,
                cancelled_at=to_db_timestamp(now),
                cancellation_reason=reason,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info(f"✅ Appointment {appointment.id} cancelled by {role} {actor.id}")
        self._notify_cancellation(appointment, role)
        return appointment

    def complete(
        self, appointment_id: int, doctor_account: Account, data: Optional[CompleteRequest] = None
    ) -> Appointment:
        appointment = self._load(appointment_id)
        self._owning_doctor(appointment, doctor_account)
        if appointment.status != "confirmed":
            raise InvalidTransition("Only confirmed appointments can be completed")
        return self._complete(appointment, doctor_account, data, None)

    def _complete(
        self,
        appointment: Appointment,
        doctor_account: Account,
        data: Optional[CompleteRequest],
        notes: Optional[str],
    ) -> Appointment:
        """Settle payment, store clinical notes and fold the visit into the doctor's stats"""
        now = self.clock()
        values = {"payment_status": "paid", "paid_at": to_db_timestamp(now)}
        if data is not None:
            values.update(
                doctor_notes=data.doctorNotes,
                diagnosis=data.diagnosis,
                prescription=[item.model_dump() for item in data.prescription],
                follow_up=data.followUp.model_dump(mode="json") if data.followUp else None,
            )

        try:
            # Completions for the same doctor queue here, so the first-visit check sees committed peers
            self.repo.lock_doctor(self.db, appointment.doctor_id)
            self._transition(
                appointment,
                "completed",
                doctor_account,
                "doctor",
                notes or "Consultation completed",
                **values,
            )
            new_patient = not self.repo.has_other_completed_with_doctor(
                self.db, appointment.patient_id, appointment.doctor_id, appointment.id
            )
            self.repo.apply_completion_stats(
                self.db,
                appointment.doctor_id,
                appointment.payment_amount or 0,
                now.strftime("%Y-%m"),
                new_patient,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info(f"✅ Appointment {appointment.id} completed (new patient: {new_patient})")
        self._notify_patient_status(appointment)
        return appointment

    # ------------------------------------------------------------------
    # Reviews and statistics
    # ------------------------------------------------------------------

    def add_review(
        self, appointment_id: int, patient: Account, rating: int, comment: Optional[str] = None
    ) -> Appointment:
        appointment = self._load(appointment_id)
        if appointment.patient_id != patient.id:
            raise Forbidden("Only the patient of this appointment can review it")
        if appointment.status != "completed":
            raise InvalidTransition("Only completed appointments can be reviewed")
        if appointment.review_rating is not None:
            raise ReviewExists()

        try:
            self.repo.lock_doctor(self.db, appointment.doctor_id)
            updated = self.repo.set_review_if_absent(
                self.db, appointment.id, rating, comment, to_db_timestamp(self.clock())
            )
            if not updated:
                raise ReviewExists()
            self._recompute_rating(appointment.doctor_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info(f"✅ Review {rating}/5 stored for appointment {appointment.id}")

        self.notifier.push(
            appointment.doctor.account.fcm_tokens,
            "New review",
            f"{patient.full_name} rated a consultation {rating}/5",
            {"type": "NEW_REVIEW", "appointmentId": appointment.id},
        )
        return appointment

    def _recompute_rating(self, doctor_id: int):
        total, count = self.repo.rating_totals(self.db, doctor_id)
        average = Decimal(0)
        if count:
            average = (Decimal(total) / Decimal(count)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        self.repo.set_rating(self.db, doctor_id, float(average), count)

    def get_doctor_stats(self, doctor_account: Account) -> dict:
        doctor = self.repo.get_doctor_for_account(self.db, doctor_account.id)
        if not doctor:
            raise NotFound("Doctor profile not found")

        by_status = self.repo.status_counts_for_doctor(self.db, doctor.id)
        return {
            "doctorId": doctor.id,
            "verificationStatus": doctor.verification_status,
            "isAvailable": doctor.is_available,
            "stats": doctor.stats,
            "appointments": {"total": sum(by_status.values()), "byStatus": by_status},
        }

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def send_due_reminders(self) -> int:
        """Remind patients of confirmed appointments starting within the reminder window"""
        now = self.clock()
        horizon = now + timedelta(hours=config.REMINDER_WINDOW_HOURS)

        reminded = []
        for appointment in self.repo.confirmed_between(self.db, now.date(), horizon.date()):
            starts_at = slot_datetime(appointment.appointment_date, appointment.appointment_time)
            if not now < starts_at <= horizon:
                continue
            if self.repo.mark_reminder_sent(self.db, appointment.id, to_db_timestamp(now)):
                reminded.append(appointment)
        self.db.commit()

        for appointment in reminded:
            doctor = appointment.doctor
            date_s = _fmt_date(appointment.appointment_date)
            self.notifier.sms(
                appointment.patient.phone,
                appointment_reminder_message(
                    doctor.account.full_name, date_s, appointment.appointment_time, (doctor.clinic or {}).get("name", "")
                ),
            )
            self.notifier.push(
                appointment.patient.fcm_tokens,
                "Appointment reminder",
                f"Dr {doctor.account.full_name} on {date_s} at {appointment.appointment_time}",
                {"type": "APPOINTMENT_REMINDER", "appointmentId": appointment.id},
            )

        logger.info(f"✅ {len(reminded)} appointment reminder(s) queued")
        return len(reminded)

    # ------------------------------------------------------------------
    # Notifications (queued after commit)
    # ------------------------------------------------------------------

    def _notify_patient_status(self, appointment: Appointment):
        title = STATUS_PUSH_TITLES.get(appointment.status)
        if not title:
            return
        self.notifier.push(
            appointment.patient.fcm_tokens,
            title,
            f"Appointment on {_fmt_date(appointment.appointment_date)} at {appointment.appointment_time}",
            {"type": "APPOINTMENT_STATUS", "appointmentId": appointment.id, "status": appointment.status},
        )

    def _notify_cancellation(self, appointment: Appointment, role: str):
        doctor = appointment.doctor
        doctor_account = doctor.account
        patient = appointment.patient
        date_s = _fmt_date(appointment.appointment_date)
        data = {"type": "APPOINTMENT_CANCELLED", "appointmentId": appointment.id}

        if role in ("doctor", ROLE_ADMIN):
            self.notifier.sms(
                patient.phone,
                appointment_cancellation_message(
                    f"Dr {doctor_account.full_name}", date_s, appointment.appointment_time, appointment.cancellation_reason
                ),
            )
            self.notifier.push(
                patient.fcm_tokens,
                "Appointment cancelled",
                f"Your appointment with Dr {doctor_account.full_name} on {date_s} was cancelled",
                data,
            )

        if role in ("patient", ROLE_ADMIN):
            self.notifier.sms(
                (doctor.clinic or {}).get("phone") or doctor_account.phone,
                appointment_cancellation_message(
                    patient.full_name, date_s, appointment.appointment_time, appointment.cancellation_reason
                ),
            )
            self.notifier.push(
                doctor_account.fcm_tokens,
                "Appointment cancelled",
                f"{patient.full_name} cancelled the appointment on {date_s} at {appointment.appointment_time}",
                data,
            )
