"""Appointment domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_time_hhmm

APPOINTMENT_STATUS_PATTERN = "^(pending|confirmed|completed|cancelled|rejected|no_show)$"
CONSULTATION_TYPE_PATTERN = "^(first_visit|follow_up|emergency|routine_checkup)$"


class AppointmentCreate(BaseModel):
    """Schema for booking an appointment"""

    doctorId: int
    appointmentDate: date
    appointmentTime: str
    reason: str
    consultationType: str = Field("first_visit", pattern=CONSULTATION_TYPE_PATTERN)
    symptoms: list[str] = []
    patientNotes: Optional[str] = Field(None, max_length=1000)

    @field_validator("appointmentTime")
    @classmethod
    def validate_time(cls, v):
        return validate_time_hhmm(v)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v):
        v = v.strip()
        if not 10 <= len(v) <= 500:
            raise ValueError("Reason must be between 10 and 500 characters")
        return v


class StatusUpdate(BaseModel):
    status: str = Field(..., pattern=APPOINTMENT_STATUS_PATTERN)
    notes: Optional[str] = Field(None, max_length=1000)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)

    @field_validator("reason", mode="before")
    @classmethod
    def strip_reason(cls, v):
        return v.strip() if isinstance(v, str) else v


class PrescriptionItem(BaseModel):
    medication: str
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    instructions: Optional[str] = None


class FollowUp(BaseModel):
    required: bool = False
    scheduledDate: Optional[date] = None
    notes: Optional[str] = None


class CompleteRequest(BaseModel):
    """Clinical outcome recorded by the doctor when closing a consultation"""

    doctorNotes: Optional[str] = Field(None, max_length=2000)
    diagnosis: Optional[str] = Field(None, max_length=1000)
    prescription: list[PrescriptionItem] = []
    followUp: Optional[FollowUp] = None

    @field_validator("doctorNotes", "diagnosis", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)

    @field_validator("comment", mode="before")
    @classmethod
    def strip_comment(cls, v):
        return v.strip() if isinstance(v, str) else v


class PartySummary(BaseModel):
    id: int
    firstName: str
    lastName: str
    phone: Optional[str] = None


class DoctorSummary(BaseModel):
    id: int
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    specialties: list[str] = []
    clinic: Optional[dict] = None
    consultationFee: Optional[float] = None


class PaymentInfo(BaseModel):
    amount: float
    currency: str
    method: str
    status: str
    paidAt: Optional[datetime] = None


class CancellationInfo(BaseModel):
    cancelledBy: Optional[str] = None
    cancelledById: Optional[int] = None
    cancelledAt: Optional[datetime] = None
    reason: Optional[str] = None


class ReviewInfo(BaseModel):
    rating: int
    comment: Optional[str] = None
    reviewDate: Optional[datetime] = None


class StatusHistoryEntry(BaseModel):
    status: str
    actorId: Optional[int] = None
    actorRole: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""

    id: int
    patient: Optional[PartySummary] = None
    doctor: Optional[DoctorSummary] = None
    appointmentDate: date
    appointmentTime: str
    duration: int
    status: str
    consultationType: str
    reason: str
    symptoms: list[str] = []
    patientNotes: Optional[str] = None
    doctorNotes: Optional[str] = None
    diagnosis: Optional[str] = None
    prescription: list[dict] = []
    followUp: Optional[dict] = None
    payment: PaymentInfo
    cancellation: Optional[CancellationInfo] = None
    review: Optional[ReviewInfo] = None
    statusHistory: list[StatusHistoryEntry] = []
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class Pagination(BaseModel):
    currentPage: int
    totalPages: int
    totalAppointments: int
    hasNext: bool
    hasPrev: bool


class AppointmentListResponse(BaseModel):
    appointments: list[AppointmentResponse]
    pagination: Pagination


class BookedSlotsResponse(BaseModel):
    doctorId: int
    appointmentDate: date
    bookedSlots: list[str]
