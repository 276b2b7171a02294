"""Appointment repository - Database operations for appointments"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session, joinedload

from ...models import Account, Appointment, AppointmentStatusHistory, DoctorProfile


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get_by_id(db: Session, appointment_id: int) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .options(
                joinedload(Appointment.patient),
                joinedload(Appointment.doctor).joinedload(DoctorProfile.account),
            )
            .filter(Appointment.id == appointment_id)
            .first()
        )

    @staticmethod
    def get_doctor(db: Session, doctor_id: int) -> Optional[DoctorProfile]:
        return (
            db.query(DoctorProfile)
            .options(joinedload(DoctorProfile.account))
            .filter(DoctorProfile.id == doctor_id)
            .first()
        )

    @staticmethod
    def get_doctor_for_account(db: Session, account_id: int) -> Optional[DoctorProfile]:
        return db.query(DoctorProfile).filter(DoctorProfile.account_id == account_id).first()

    @staticmethod
    def lock_doctor(db: Session, doctor_id: int) -> Optional[int]:
        """Row-lock the doctor profile until commit; serializes writers of its stats and rating"""
        return db.query(DoctorProfile.id).filter(DoctorProfile.id == doctor_id).with_for_update().scalar()

    @staticmethod
    def list_for_doctor(
        db: Session,
        doctor_id: int,
        status: Optional[str],
        day: Optional[date],
        offset: int,
        limit: int,
    ) -> tuple[list[Appointment], int]:
        """Doctor's agenda, earliest first"""
        query = db.query(Appointment).filter(Appointment.doctor_id == doctor_id)
        if status:
            query = query.filter(Appointment.status == status)
        if day:
            query = query.filter(Appointment.appointment_date == day)

        total = query.count()
        items = (
            query.options(joinedload(Appointment.patient))
            .order_by(Appointment.appointment_date.asc(), Appointment.appointment_time.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    @staticmethod
    def list_for_patient(
        db: Session, patient_id: int, status: Optional[str], offset: int, limit: int
    ) -> tuple[list[Appointment], int]:
        """Patient's appointments, newest first"""
        query = db.query(Appointment).filter(Appointment.patient_id == patient_id)
        if status:
            query = query.filter(Appointment.status == status)

        total = query.count()
        items = (
            query.options(joinedload(Appointment.doctor).joinedload(DoctorProfile.account))
            .order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    @staticmethod
    def list_all(
        db: Session,
        status: Optional[str],
        doctor_id: Optional[int],
        patient_id: Optional[int],
        day: Optional[date],
        offset: int,
        limit: int,
    ) -> tuple[list[Appointment], int]:
        """Every appointment for administrators, newest first"""
        query = db.query(Appointment)
        if status:
            query = query.filter(Appointment.status == status)
        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if patient_id:
            query = query.filter(Appointment.patient_id == patient_id)
        if day:
            query = query.filter(Appointment.appointment_date == day)

        total = query.count()
        items = (
            query.options(
                joinedload(Appointment.patient),
                joinedload(Appointment.doctor).joinedload(DoctorProfile.account),
            )
            .order_by(
                Appointment.appointment_date.desc(), Appointment.appointment_time.desc(), Appointment.id.desc()
            )
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    @staticmethod
    def add_history(
        db: Session,
        appointment_id: int,
        status: str,
        actor: Optional[Account],
        actor_role: Optional[str],
        notes: Optional[str] = None,
    ) -> AppointmentStatusHistory:
        entry = AppointmentStatusHistory(
            appointment_id=appointment_id,
            status=status,
            actor_id=actor.id if actor else None,
            actor_role=actor_role,
            notes=notes,
        )
        db.add(entry)
        return entry

    @staticmethod
    def update_if_status(db: Session, appointment_id: int, expected_status: str, **values) -> int:
        """
        Compare-and-set update: only applies while the row still has ``expected_status``.

        Returns:
            Number of rows updated (0 when another writer moved the appointment first)
        """
        updates = {getattr(Appointment, key): value for key, value in values.items()}
        return (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.status == expected_status)
            .update(updates, synchronize_session=False)
        )

    @staticmethod
    def set_review_if_absent(
        db: Session, appointment_id: int, rating: int, comment: Optional[str], reviewed_at: datetime
    ) -> int:
        """Store the review only on a completed, not yet reviewed appointment"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.id == appointment_id,
                Appointment.status == "completed",
                Appointment.review_rating.is_(None),
            )
            .update(
                {
                    Appointment.review_rating: rating,
                    Appointment.review_comment: comment,
                    Appointment.review_date: reviewed_at,
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def has_other_completed_with_doctor(
        db: Session, patient_id: int, doctor_id: int, exclude_appointment_id: int
    ) -> bool:
        return (
            db.query(Appointment.id)
            .filter(
                Appointment.patient_id == patient_id,
                Appointment.doctor_id == doctor_id,
                Appointment.status == "completed",
                Appointment.id != exclude_appointment_id,
            )
            .first()
            is not None
        )

    @staticmethod
    def apply_completion_stats(
        db: Session, doctor_id: int, amount: float, month: str, new_patient: bool
    ) -> int:
        """Fold one completed consultation into the doctor's counters in a single UPDATE"""
        return (
            db.query(DoctorProfile)
            .filter(DoctorProfile.id == doctor_id)
            .update(
                {
                    DoctorProfile.total_appointments: DoctorProfile.total_appointments + 1,
                    DoctorProfile.total_patients: DoctorProfile.total_patients + (1 if new_patient else 0),
                    DoctorProfile.total_income: DoctorProfile.total_income + amount,
                    DoctorProfile.monthly_income_amount: case(
                        (
                            DoctorProfile.monthly_income_month == month,
                            DoctorProfile.monthly_income_amount + amount,
                        ),
                        else_=amount,
                    ),
                    DoctorProfile.monthly_income_month: month,
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def rating_totals(db: Session, doctor_id: int) -> tuple[int, int]:
        """Sum and count of ratings over the doctor's completed, reviewed appointments"""
        total, count = (
            db.query(func.coalesce(func.sum(Appointment.review_rating), 0), func.count(Appointment.review_rating))
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.status == "completed",
                Appointment.review_rating.isnot(None),
            )
            .one()
        )
        return int(total or 0), int(count or 0)

    @staticmethod
    def set_rating(db: Session, doctor_id: int, average: float, count: int) -> int:
        return (
            db.query(DoctorProfile)
            .filter(DoctorProfile.id == doctor_id)
            .update(
                {DoctorProfile.average_rating: average, DoctorProfile.total_reviews: count},
                synchronize_session=False,
            )
        )

    @staticmethod
    def status_counts_for_doctor(db: Session, doctor_id: int) -> dict[str, int]:
        rows = (
            db.query(Appointment.status, func.count(Appointment.id))
            .filter(Appointment.doctor_id == doctor_id)
            .group_by(Appointment.status)
            .all()
        )
        return {status: count for status, count in rows}

    @staticmethod
    def confirmed_between(db: Session, start_day: date, end_day: date) -> list[Appointment]:
        """Confirmed appointments without a reminder in the [start_day, end_day] range"""
        return (
            db.query(Appointment)
            .options(
                joinedload(Appointment.patient),
                joinedload(Appointment.doctor).joinedload(DoctorProfile.account),
            )
            .filter(
                Appointment.status == "confirmed",
                Appointment.reminder_sent_at.is_(None),
                Appointment.appointment_date >= start_day,
                Appointment.appointment_date <= end_day,
            )
            .order_by(Appointment.appointment_date.asc(), Appointment.appointment_time.asc())
            .all()
        )

    @staticmethod
    def mark_reminder_sent(db: Session, appointment_id: int, sent_at: datetime) -> int:
        return (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.reminder_sent_at.is_(None))
            .update({Appointment.reminder_sent_at: sent_at}, synchronize_session=False)
        )
