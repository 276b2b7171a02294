"""Credentialing domain schemas - Pydantic models for doctor upgrade requests"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...config import DEFAULT_CURRENCY
from ...shared.validators import validate_senegal_phone


class Coordinates(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class ClinicAddress(BaseModel):
    street: str = Field(..., min_length=5, max_length=200)
    city: str = Field(..., min_length=2, max_length=50)
    region: Optional[str] = None
    country: Optional[str] = None
    coordinates: Coordinates

    @field_validator("street", "city", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class Clinic(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    address: ClinicAddress
    phone: Optional[str] = None
    description: Optional[str] = Field(None, max_length=1000)
    photos: list[dict] = []

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        if v:
            return validate_senegal_phone(v)
        return v


class EducationEntry(BaseModel):
    institution: str
    degree: str
    field: Optional[str] = None
    graduationYear: Optional[int] = Field(None, ge=1900, le=2100)
    country: Optional[str] = None


class DoctorRequestCreate(BaseModel):
    """Schema for an account applying to become a doctor"""

    medicalLicenseNumber: str
    specialties: list[str] = Field(..., min_length=1)
    yearsOfExperience: int = Field(..., ge=0, le=50)
    education: list[EducationEntry] = []
    consultationFee: float = Field(..., ge=0)
    currency: str = Field(DEFAULT_CURRENCY, min_length=3, max_length=3)
    clinic: Clinic
    workingHours: Optional[dict] = None
    languages: list[str] = Field(..., min_length=1)
    bio: Optional[str] = Field(None, max_length=1000)
    documents: Optional[dict] = None
    profilePhoto: Optional[dict] = None

    @field_validator("medicalLicenseNumber")
    @classmethod
    def validate_license(cls, v):
        v = v.strip()
        if not 5 <= len(v) <= 20:
            raise ValueError("Medical license number must be between 5 and 20 characters")
        return v


class ApproveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=500)


class RejectRequest(BaseModel):
    reason: str
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v):
        v = v.strip()
        if not 10 <= len(v) <= 500:
            raise ValueError("Rejection reason must be between 10 and 500 characters")
        return v


class AdminNotesUpdate(BaseModel):
    notes: str = Field(..., max_length=500)


class RequestUser(BaseModel):
    id: int
    firstName: str
    lastName: str
    phone: Optional[str] = None
    email: Optional[str] = None
    registeredAt: Optional[datetime] = None


class Reviewer(BaseModel):
    id: int
    name: str


class DoctorRequestResponse(BaseModel):
    """Schema for doctor request response"""

    id: int
    user: Optional[RequestUser] = None
    medicalLicenseNumber: str
    specialties: list[str]
    yearsOfExperience: int
    education: list[dict] = []
    workingHours: Optional[dict] = None
    consultationFee: Optional[float] = None
    currency: str
    clinic: dict
    languages: list[str] = []
    bio: Optional[str] = None
    documents: Optional[dict] = None
    profilePhoto: Optional[dict] = None
    status: str
    rejectionReason: Optional[str] = None
    adminNotes: Optional[str] = None
    reviewedAt: Optional[datetime] = None
    reviewedBy: Optional[Reviewer] = None
    requestedAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class RequestPagination(BaseModel):
    current: int
    total: int
    count: int
    totalRequests: int


class DoctorRequestListResponse(BaseModel):
    requests: list[DoctorRequestResponse]
    pagination: RequestPagination


class ReviewDecisionResponse(BaseModel):
    """Outcome of an approve or reject decision"""

    id: int
    status: str
    reviewedAt: Optional[datetime] = None
    reviewedBy: Optional[Reviewer] = None
    rejectionReason: Optional[str] = None
    doctorId: Optional[int] = None
    provisioning: Optional[str] = None
