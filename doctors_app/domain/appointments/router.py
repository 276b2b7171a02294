"""Appointment router - FastAPI endpoints for booking and the appointment lifecycle"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_admin, require_roles, require_verified
from ...database import get_db
from ...models import ROLE_DOCTOR, Account, Appointment
from ...services.notification_service import NotificationDispatcher
from .schemas import (
    APPOINTMENT_STATUS_PATTERN,
    AppointmentCreate,
    AppointmentListResponse,
    AppointmentResponse,
    BookedSlotsResponse,
    CancelRequest,
    CompleteRequest,
    ReviewCreate,
    StatusUpdate,
)
from .service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])
admin_router = APIRouter(prefix="/admin/appointments", tags=["Admin"])

require_doctor = require_roles(ROLE_DOCTOR)


def get_appointment_service(
    background_tasks: BackgroundTasks, db: Session = Depends(get_db)
) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db, NotificationDispatcher(background_tasks))


def to_appointment_response(a: Appointment) -> AppointmentResponse:
    patient = a.patient
    doctor = a.doctor
    doctor_account = doctor.account if doctor else None
    return AppointmentResponse(
        id=a.id,
        patient=(
            {"id": patient.id, "firstName": patient.first_name, "lastName": patient.last_name, "phone": patient.phone}
            if patient
            else None
        ),
        doctor=(
            {
                "id": doctor.id,
                "firstName": doctor_account.first_name if doctor_account else None,
                "lastName": doctor_account.last_name if doctor_account else None,
                "specialties": doctor.specialties or [],
                "clinic": doctor.clinic,
                "consultationFee": doctor.consultation_fee,
            }
            if doctor
            else None
        ),
        appointmentDate=a.appointment_date,
        appointmentTime=a.appointment_time,
        duration=a.duration or 30,
        status=a.status,
        consultationType=a.consultation_type,
        reason=a.reason,
        symptoms=a.symptoms or [],
        patientNotes=a.patient_notes,
        doctorNotes=a.doctor_notes,
        diagnosis=a.diagnosis,
        prescription=a.prescription or [],
        followUp=a.follow_up,
        payment={
            "amount": a.payment_amount,
            "currency": a.payment_currency,
            "method": a.payment_method,
            "status": a.payment_status,
            "paidAt": a.paid_at,
        },
        cancellation=(
            {
                "cancelledBy": a.cancelled_by,
                "cancelledById": a.cancelled_by_id,
                "cancelledAt": a.cancelled_at,
                "reason": a.cancellation_reason,
            }
            if a.cancelled_by
            else None
        ),
        review=(
            {"rating": a.review_rating, "comment": a.review_comment, "reviewDate": a.review_date}
            if a.review_rating is not None
            else None
        ),
        statusHistory=[
            {
                "status": h.status,
                "actorId": h.actor_id,
                "actorRole": h.actor_role,
                "notes": h.notes,
                "timestamp": h.created_at,
            }
            for h in a.history
        ],
        createdAt=a.created_at,
        updatedAt=a.updated_at,
    )


def _list_response(result: dict) -> AppointmentListResponse:
    return AppointmentListResponse(
        appointments=[to_appointment_response(a) for a in result["appointments"]],
        pagination=result["pagination"],
    )


@router.post("", response_model=AppointmentResponse, status_code=201)
async def create_appointment(
    data: AppointmentCreate,
    current_user: Account = Depends(require_verified),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Book an appointment with a doctor"""
    return to_appointment_response(service.create(current_user, data))


@router.get("/doctor/me", response_model=AppointmentListResponse)
async def list_doctor_appointments(
    status: Optional[str] = Query(None, pattern=APPOINTMENT_STATUS_PATTERN),
    date: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: Account = Depends(require_doctor),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Agenda of the authenticated doctor"""
    return _list_response(service.list_for_doctor(current_user, status, date, page, limit))


@router.get("/doctor/stats")
async def get_doctor_stats(
    current_user: Account = Depends(require_doctor),
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.get_doctor_stats(current_user)


@router.get("/patient/me", response_model=AppointmentListResponse)
async def list_patient_appointments(
    status: Optional[str] = Query(None, pattern=APPOINTMENT_STATUS_PATTERN),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: Account = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Appointments booked by the authenticated account"""
    return _list_response(service.list_for_patient(current_user, status, page, limit))


@router.get("/availability/{doctor_id}", response_model=BookedSlotsResponse)
async def get_booked_slots(
    doctor_id: int,
    date: date = Query(...),
    current_user: Account = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Times already held on a doctor's agenda for one day"""
    return BookedSlotsResponse(
        doctorId=doctor_id, appointmentDate=date, bookedSlots=service.get_booked_slots(doctor_id, date)
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    current_user: Account = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return to_appointment_response(service.get_by_id(appointment_id, current_user))


@router.put("/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: int,
    data: StatusUpdate,
    current_user: Account = Depends(require_doctor),
    service: AppointmentService = Depends(get_appointment_service),
):
    return to_appointment_response(service.set_status(appointment_id, current_user, data.status, data.notes))


@router.put("/{appointment_id}/confirm", response_model=AppointmentResponse)
async def confirm_appointment(
    appointment_id: int,
    current_user: Account = Depends(require_doctor),
    service: AppointmentService = Depends(get_appointment_service),
):
    return to_appointment_response(service.confirm(appointment_id, current_user))


@router.put("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    data: Optional[CancelRequest] = None,
    current_user: Account = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Cancel as patient, owning doctor or admin"""
    reason = data.reason if data else None
    return to_appointment_response(service.cancel(appointment_id, current_user, reason))


@router.put("/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(
    appointment_id: int,
    data: Optional[CompleteRequest] = None,
    current_user: Account = Depends(require_doctor),
    service: AppointmentService = Depends(get_appointment_service),
):
    return to_appointment_response(service.complete(appointment_id, current_user, data or CompleteRequest()))


@router.post("/{appointment_id}/review", response_model=AppointmentResponse)
async def review_appointment(
    appointment_id: int,
    data: ReviewCreate,
    current_user: Account = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return to_appointment_response(service.add_review(appointment_id, current_user, data.rating, data.comment))


# ============================================================================
# ADMIN OVERSIGHT
# ============================================================================


@admin_router.get("", response_model=AppointmentListResponse)
async def list_all_appointments(
    status: Optional[str] = Query(None, pattern=APPOINTMENT_STATUS_PATTERN),
    doctor_id: Optional[int] = Query(None, alias="doctorId"),
    patient_id: Optional[int] = Query(None, alias="patientId"),
    date: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    current_user: Account = Depends(require_admin),
    service: AppointmentService = Depends(get_appointment_service),
):
    """All appointments, newest first, filterable by status, doctor, patient and day"""
    return _list_response(service.list_all(status, doctor_id, patient_id, date, page, limit))
