from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

ROLE_PATIENT = "patient"
ROLE_DOCTOR = "doctor"
ROLE_ADMIN = "admin"

REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"

# Statuses that hold a slot
ACTIVE_APPOINTMENT_STATUSES = ("pending", "confirmed")
_ACTIVE_SLOT_PREDICATE = "status IN ('pending', 'confirmed')"


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    phone = Column(String(20), unique=True, index=True, nullable=False)  # E.164, e.g. +221771234567
    email = Column(String(255), nullable=True)
    role = Column(String(20), default=ROLE_PATIENT, nullable=False)  # patient, doctor, admin
    is_active = Column(Boolean, default=True, nullable=False)
    is_phone_verified = Column(Boolean, default=False, nullable=False)
    fcm_tokens = Column(JSON, default=list, nullable=True)  # Push registration tokens
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    doctor_profile = relationship(
        "DoctorProfile",
        back_populates="account",
        uselist=False,
        foreign_keys="DoctorProfile.account_id",
    )
    doctor_requests = relationship(
        "DoctorRequest", back_populates="account", foreign_keys="DoctorRequest.account_id"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class DoctorProfile(Base):
    __tablename__ = "doctor_profiles"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), unique=True, nullable=False)
    medical_license_number = Column(String(20), unique=True, index=True, nullable=False)
    specialties = Column(JSON, default=list, nullable=False)
    years_of_experience = Column(Integer, nullable=False)
    education = Column(JSON, default=list, nullable=True)  # [{degree, institution, year, country}]
    # {name, phone, description, photos, address: {street, city, region, country,
    #  location: {"type": "Point", "coordinates": [longitude, latitude]}}}
    clinic = Column(JSON, nullable=False)
    working_hours = Column(JSON, nullable=True)
    consultation_fee = Column(Float, nullable=False)
    currency = Column(String(3), default="XOF", nullable=False)
    languages = Column(JSON, default=list, nullable=True)
    bio = Column(Text, nullable=True)
    documents = Column(JSON, nullable=True)  # {medicalLicense, diplomas, certifications}
    profile_photo = Column(JSON, nullable=True)

    verification_status = Column(String(20), default=REQUEST_PENDING, nullable=False)
    verified_at = Column(DateTime, nullable=True)
    verified_by = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    verification_notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    # Aggregate statistics - counters are only ever changed with atomic UPDATEs
    total_appointments = Column(Integer, default=0, nullable=False)
    total_patients = Column(Integer, default=0, nullable=False)
    total_income = Column(Float, default=0, nullable=False)
    monthly_income_month = Column(String(7), nullable=True)  # YYYY-MM
    monthly_income_amount = Column(Float, default=0, nullable=False)
    average_rating = Column(Float, default=0, nullable=False)
    total_reviews = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    account = relationship("Account", back_populates="doctor_profile", foreign_keys=[account_id])
    appointments = relationship("Appointment", back_populates="doctor")

    @property
    def location(self):
        return ((self.clinic or {}).get("address") or {}).get("location")

    @property
    def stats(self) -> dict:
        return {
            "totalAppointments": self.total_appointments or 0,
            "totalPatients": self.total_patients or 0,
            "totalIncome": self.total_income or 0,
            "monthlyIncome": {
                "month": self.monthly_income_month,
                "amount": self.monthly_income_amount or 0,
            },
            "averageRating": self.average_rating or 0,
            "totalReviews": self.total_reviews or 0,
        }


class DoctorRequest(Base):
    __tablename__ = "doctor_requests"
    __table_args__ = (
        # One pending application per account
        Index(
            "uq_doctor_requests_account_pending",
            "account_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), index=True, nullable=False)

    # Professional payload, kept in the shape it was submitted in
    specialties = Column(JSON, default=list, nullable=False)
    years_of_experience = Column(Integer, nullable=False)
    medical_license_number = Column(String(20), index=True, nullable=False)
    education = Column(JSON, default=list, nullable=True)  # [{institution, degree, field, graduationYear}]
    consultation_fee = Column(Float, nullable=True)
    currency = Column(String(3), default="XOF", nullable=False)
    # {name, phone, description, photos, address: {street, city, region, country,
    #  coordinates: {latitude, longitude}}}
    clinic = Column(JSON, nullable=False)
    working_hours = Column(JSON, nullable=True)
    languages = Column(JSON, default=list, nullable=True)
    bio = Column(Text, nullable=True)
    documents = Column(JSON, nullable=True)
    profile_photo = Column(JSON, nullable=True)

    status = Column(String(20), default=REQUEST_PENDING, index=True, nullable=False)
    rejection_reason = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)
    requested_at = Column(DateTime, server_default=func.now())
    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by = Column(Integer, ForeignKey("accounts.id"), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    account = relationship("Account", back_populates="doctor_requests", foreign_keys=[account_id])
    reviewer = relationship("Account", foreign_keys=[reviewed_by])


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_doctor_active_slot",
            "doctor_id",
            "appointment_date",
            "appointment_time",
            unique=True,
            postgresql_where=text(_ACTIVE_SLOT_PREDICATE),
            sqlite_where=text(_ACTIVE_SLOT_PREDICATE),
        ),
        Index(
            "uq_appointments_patient_active_slot",
            "patient_id",
            "appointment_date",
            "appointment_time",
            unique=True,
            postgresql_where=text(_ACTIVE_SLOT_PREDICATE),
            sqlite_where=text(_ACTIVE_SLOT_PREDICATE),
        ),
        Index("ix_appointments_doctor_date", "doctor_id", "appointment_date"),
        Index("ix_appointments_patient_date", "patient_id", "appointment_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctor_profiles.id"), nullable=False)

    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(String(5), nullable=False)  # HH:MM
    duration = Column(Integer, default=30, nullable=False)  # minutes

    # pending, confirmed, completed, cancelled, rejected, no_show
    status = Column(String(20), default="pending", index=True, nullable=False)
    consultation_type = Column(String(30), default="first_visit", nullable=False)
    reason = Column(String(500), nullable=False)
    symptoms = Column(JSON, default=list, nullable=True)
    patient_notes = Column(Text, nullable=True)

    # Filled in by the doctor after the consultation
    doctor_notes = Column(Text, nullable=True)
    diagnosis = Column(Text, nullable=True)
    prescription = Column(JSON, default=list, nullable=True)
    follow_up = Column(JSON, nullable=True)  # {required, scheduledDate, notes}

    # Payment (cash settled at the clinic)
    payment_amount = Column(Float, nullable=False)
    payment_currency = Column(String(3), default="XOF", nullable=False)
    payment_method = Column(String(20), default="cash", nullable=False)
    payment_status = Column(String(20), default="pending", nullable=False)
    paid_at = Column(DateTime, nullable=True)

    # Cancellation
    cancelled_by = Column(String(20), nullable=True)  # patient, doctor, admin
    cancelled_by_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(String(200), nullable=True)

    # Review (once, after completion)
    review_rating = Column(Integer, nullable=True)
    review_comment = Column(String(500), nullable=True)
    review_date = Column(DateTime, nullable=True)

    reminder_sent_at = Column(DateTime, nullable=True)
    created_by = Column(String(20), default="patient", nullable=False)
    source = Column(String(20), default="mobile_app", nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Account", foreign_keys=[patient_id])
    doctor = relationship("DoctorProfile", back_populates="appointments")
    history = relationship(
        "AppointmentStatusHistory",
        back_populates="appointment",
        order_by="AppointmentStatusHistory.id",
    )


class AppointmentStatusHistory(Base):
    """Append-only trail of appointment status changes"""

    __tablename__ = "appointment_status_history"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), index=True, nullable=False)
    status = Column(String(20), nullable=False)
    actor_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    actor_role = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    appointment = relationship("Appointment", back_populates="history")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    # DOCTOR_VERIFICATION_STATUS_CHANGE, ROLE_CHANGE, APPROVAL_RECONCILED, APPROVAL_COMPENSATED
    action = Column(String(50), index=True, nullable=False)
    entity_type = Column(String(30), nullable=False)  # Account, DoctorRequest, DoctorProfile
    entity_id = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, default=dict, nullable=True)
    performed_by = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)
