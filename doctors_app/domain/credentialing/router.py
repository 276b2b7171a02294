"""Credentialing router - doctor upgrade submission and admin review endpoints"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_admin
from ...database import get_db
from ...models import Account, DoctorRequest
from ...services.notification_service import NotificationDispatcher
from .schemas import (
    AdminNotesUpdate,
    ApproveRequest,
    DoctorRequestCreate,
    DoctorRequestListResponse,
    DoctorRequestResponse,
    RejectRequest,
    ReviewDecisionResponse,
)
from .service import CredentialingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Doctor Credentialing"])


def get_credentialing_service(
    background_tasks: BackgroundTasks, db: Session = Depends(get_db)
) -> CredentialingService:
    """Dependency injection for CredentialingService"""
    return CredentialingService(db, NotificationDispatcher(background_tasks))


def to_request_response(r: DoctorRequest) -> DoctorRequestResponse:
    account = r.account
    reviewer = r.reviewer
    return DoctorRequestResponse(
        id=r.id,
        user=(
            {
                "id": account.id,
                "firstName": account.first_name,
                "lastName": account.last_name,
                "phone": account.phone,
                "email": account.email,
                "registeredAt": account.created_at,
            }
            if account
            else None
        ),
        medicalLicenseNumber=r.medical_license_number,
        specialties=r.specialties or [],
        yearsOfExperience=r.years_of_experience,
        education=r.education or [],
        workingHours=r.working_hours,
        consultationFee=r.consultation_fee,
        currency=r.currency,
        clinic=r.clinic or {},
        languages=r.languages or [],
        bio=r.bio,
        documents=r.documents,
        profilePhoto=r.profile_photo,
        status=r.status,
        rejectionReason=r.rejection_reason,
        adminNotes=r.admin_notes,
        reviewedAt=r.reviewed_at,
        reviewedBy={"id": reviewer.id, "name": reviewer.full_name} if reviewer else None,
        requestedAt=r.requested_at or r.created_at,
        updatedAt=r.updated_at,
    )


# ============================================================================
# APPLICANT
# ============================================================================


@router.post("/doctor-requests", response_model=DoctorRequestResponse, status_code=201)
async def submit_doctor_request(
    data: DoctorRequestCreate,
    current_user: Account = Depends(get_current_user),
    service: CredentialingService = Depends(get_credentialing_service),
):
    """Apply for a doctor account; reviewed by an administrator"""
    return to_request_response(service.submit(current_user, data))


# ============================================================================
# ADMIN REVIEW
# ============================================================================


@router.get("/admin/doctor-requests", response_model=DoctorRequestListResponse)
async def list_doctor_requests(
    status: Optional[str] = Query(None, pattern="^(pending|approved|rejected)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: Account = Depends(require_admin),
    service: CredentialingService = Depends(get_credentialing_service),
):
    result = service.list_requests(status, page, limit)
    return DoctorRequestListResponse(
        requests=[to_request_response(r) for r in result["requests"]],
        pagination=result["pagination"],
    )


@router.get("/admin/doctor-requests/stats")
async def get_doctor_request_stats(
    current_user: Account = Depends(require_admin),
    service: CredentialingService = Depends(get_credentialing_service),
):
    """Overview, period counts, top specialties and six-month trends"""
    return service.stats_summary()


@router.get("/admin/doctor-requests/{request_id}")
async def get_doctor_request(
    request_id: int,
    current_user: Account = Depends(require_admin),
    service: CredentialingService = Depends(get_credentialing_service),
):
    result = service.get_by_id(request_id)
    body = to_request_response(result["request"]).model_dump(mode="json")
    body["doctorId"] = result["doctorId"]
    body["stats"] = result["stats"]
    return body


@router.post("/admin/doctor-requests/{request_id}/approve", response_model=ReviewDecisionResponse)
async def approve_doctor_request(
    request_id: int,
    data: Optional[ApproveRequest] = None,
    current_user: Account = Depends(require_admin),
    service: CredentialingService = Depends(get_credentialing_service),
):
    """Approve a pending request: creates the doctor profile and promotes the account"""
    return service.approve(request_id, current_user, data.notes if data else None)


@router.post("/admin/doctor-requests/{request_id}/reject", response_model=ReviewDecisionResponse)
async def reject_doctor_request(
    request_id: int,
    data: RejectRequest,
    current_user: Account = Depends(require_admin),
    service: CredentialingService = Depends(get_credentialing_service),
):
    return service.reject(request_id, current_user, data.reason, data.notes)


@router.patch("/admin/doctor-requests/{request_id}/notes", response_model=DoctorRequestResponse)
async def update_doctor_request_notes(
    request_id: int,
    data: AdminNotesUpdate,
    current_user: Account = Depends(require_admin),
    service: CredentialingService = Depends(get_credentialing_service),
):
    return to_request_response(service.update_admin_notes(request_id, current_user, data.notes))
