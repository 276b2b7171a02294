"""Credentialing service - Doctor upgrade requests and their admin review

Approval is one database transaction: the request decision, the new
DoctorProfile, the role promotion and the audit rows commit together or not
at all. ``reconcile_approved_requests`` repairs any approved request that
still lacks its profile.
"""

import copy
import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import config
from ...models import (
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    ROLE_ADMIN,
    ROLE_DOCTOR,
    Account,
    DoctorProfile,
    DoctorRequest,
)
from ...services.notification_service import NotificationDispatcher
from ...shared.clock import app_now, to_db_timestamp
from ...shared.errors import (
    AlreadyExists,
    AlreadyReviewed,
    DuplicateLicense,
    Forbidden,
    NotFound,
    ValidationError,
)
from ..appointments.repository import AppointmentRepository
from .repository import CredentialingRepository
from .schemas import DoctorRequestCreate

logger = logging.getLogger(__name__)

AUDIT_VERIFICATION_CHANGE = "DOCTOR_VERIFICATION_STATUS_CHANGE"
AUDIT_ROLE_CHANGE = "ROLE_CHANGE"
AUDIT_APPROVAL_RECONCILED = "APPROVAL_RECONCILED"
AUDIT_APPROVAL_COMPENSATED = "APPROVAL_COMPENSATED"

PROVISIONING_COMPLETE = "complete"


def map_education(entries: Optional[list]) -> list[dict]:
    """Request education entries (graduationYear) to profile entries (year)"""
    return [
        {
            "degree": entry.get("degree"),
            "institution": entry.get("institution"),
            "year": entry.get("graduationYear"),
            "country": entry.get("country") or config.DEFAULT_COUNTRY,
        }
        for entry in entries or []
    ]


def to_geo_point(coordinates: Optional[dict]) -> dict:
    """
    Convert {latitude, longitude} into a GeoJSON Point.

    Raises:
        ValidationError: If either coordinate is missing or out of range
    """
    if not coordinates:
        raise ValidationError("Clinic coordinates are required to create a doctor profile")

    try:
        latitude = float(coordinates["latitude"])
        longitude = float(coordinates["longitude"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError("Clinic coordinates are incomplete") from e

    if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
        raise ValidationError("Clinic coordinates are out of range")

    return {"type": "Point", "coordinates": [longitude, latitude]}


def map_clinic(clinic: Optional[dict]) -> dict:
    """Copy of the request clinic with address.coordinates replaced by address.location"""
    mapped = copy.deepcopy(clinic or {})
    address = mapped.setdefault("address", {})
    address["location"] = to_geo_point(address.pop("coordinates", None))
    return mapped


def _reviewer(account: Optional[Account]) -> Optional[dict]:
    if not account:
        return None
    return {"id": account.id, "name": account.full_name}


class CredentialingService:
    """Service layer for the doctor credentialing workflow"""

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.repo = CredentialingRepository()
        self.notifier = notifier or NotificationDispatcher()
        self.clock = clock or app_now

    def _load(self, request_id: int) -> DoctorRequest:
        request = self.repo.get_by_id(self.db, request_id)
        if not request:
            raise NotFound("Request not found")
        return request

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, account: Account, data: DoctorRequestCreate) -> DoctorRequest:
        """Store a pending upgrade request for the account"""
        logger.info(f"📥 Doctor request submission from account {account.id}")

        if account.role == ROLE_ADMIN:
            raise Forbidden("Administrators cannot apply as doctors")
        if not account.is_active or not account.is_phone_verified:
            raise Forbidden("Please verify your phone number first")

        if self.repo.get_profile_for_account(self.db, account.id):
            raise AlreadyExists("You are already registered as a doctor")
        if self.repo.get_pending_for_account(self.db, account.id):
            raise AlreadyExists("You already have a pending request")

        license_number = data.medicalLicenseNumber
        if self.repo.license_in_profiles(self.db, license_number) or self.repo.license_pending_elsewhere(
            self.db, license_number, account.id
        ):
            logger.warning(f"⚠️ Duplicate license number submitted by account {account.id}")
            raise DuplicateLicense()

        try:
            request = self.repo.create_request(
                self.db,
                account_id=account.id,
                medical_license_number=license_number,
                specialties=data.specialties,
                years_of_experience=data.yearsOfExperience,
                education=[entry.model_dump(exclude_none=True) for entry in data.education],
                consultation_fee=data.consultationFee,
                currency=data.currency,
                clinic=data.clinic.model_dump(exclude_none=True),
                working_hours=data.workingHours,
                languages=data.languages,
                bio=data.bio,
                documents=data.documents,
                profile_photo=data.profilePhoto,
                status=REQUEST_PENDING,
                requested_at=to_db_timestamp(self.clock()),
            )
        except IntegrityError as e:
            self.db.rollback()
            raise AlreadyExists("You already have a pending request") from e

        logger.info(f"✅ Doctor request {request.id} created for account {account.id}")
        return request

    # ------------------------------------------------------------------
    # Admin queries
    # ------------------------------------------------------------------

    def list_requests(self, status: Optional[str] = None, page: int = 1, limit: int = 10) -> dict:
        limit = min(limit, 100)
        items, total = self.repo.list_requests(self.db, status, (page - 1) * limit, limit)
        return {
            "requests": items,
            "pagination": {
                "current": page,
                "total": math.ceil(total / limit) if limit else 0,
                "count": len(items),
                "totalRequests": total,
            },
        }

    def get_by_id(self, request_id: int) -> dict:
        """The request plus, once approved, the created doctor and their appointment stats"""
        request = self._load(request_id)

        doctor_id = None
        stats = None
        if request.status == REQUEST_APPROVED:
            profile = self.repo.get_profile_for_account(self.db, request.account_id)
            if profile:
                doctor_id = profile.id
                by_status = AppointmentRepository.status_counts_for_doctor(self.db, profile.id)
                total = sum(by_status.values())
                completed = by_status.get("completed", 0)
                stats = {
                    "totalAppointments": total,
                    "completedAppointments": completed,
                    "appointmentsByStatus": by_status,
                    "successRate": round(completed / total * 100, 1) if total else 0,
                }

        return {"request": request, "doctorId": doctor_id, "stats": stats}

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def _provision(
        self,
        request: DoctorRequest,
        clinic: dict,
        verified_by: Optional[int],
        verified_at: datetime,
        notes: Optional[str],
    ) -> DoctorProfile:
        """Create the doctor profile and promote the account (uncommitted)"""
        profile = DoctorProfile(
            account_id=request.account_id,
            medical_license_number=request.medical_license_number,
            specialties=request.specialties,
            years_of_experience=request.years_of_experience,
            education=map_education(request.education),
            clinic=clinic,
            working_hours=request.working_hours,
            consultation_fee=request.consultation_fee or 0,
            currency=request.currency or config.DEFAULT_CURRENCY,
            languages=request.languages,
            bio=request.bio,
            documents=request.documents,
            profile_photo=request.profile_photo,
            verification_status=REQUEST_APPROVED,
            verified_at=verified_at,
            verified_by=verified_by,
            verification_notes=notes,
            is_active=True,
            is_available=True,
        )
        self.repo.add_profile(self.db, profile)

        previous_role = request.account.role
        self.repo.set_role(self.db, request.account_id, ROLE_DOCTOR)
        self.repo.add_audit(
            self.db,
            AUDIT_ROLE_CHANGE,
            "Account",
            request.account_id,
            f"Role changed from {previous_role} to {ROLE_DOCTOR}",
            {"from": previous_role, "to": ROLE_DOCTOR, "doctorRequestId": request.id},
            verified_by,
        )
        return profile

    def approve(self, request_id: int, admin: Account, notes: Optional[str] = None) -> dict:
        request = self._load(request_id)
        if request.status != REQUEST_PENDING:
            raise AlreadyReviewed()

        # Raises before any write when the stored request lacks coordinates
        clinic = map_clinic(request.clinic)

        if self.repo.get_profile_for_account(self.db, request.account_id):
            raise AlreadyExists("This account already has a doctor profile")
        if self.repo.license_in_profiles(self.db, request.medical_license_number):
            raise DuplicateLicense()

        reviewed_at = to_db_timestamp(self.clock())
        try:
            if not self.repo.mark_reviewed_if_pending(
                self.db, request.id, REQUEST_APPROVED, admin.id, reviewed_at, notes
            ):
                raise AlreadyReviewed()
            profile = self._provision(request, clinic, admin.id, reviewed_at, notes)
            self.repo.add_audit(
                self.db,
                AUDIT_VERIFICATION_CHANGE,
                "DoctorRequest",
                request.id,
                f"Doctor request approved for account {request.account_id}",
                {"from": REQUEST_PENDING, "to": REQUEST_APPROVED, "doctorProfileId": profile.id, "notes": notes},
                admin.id,
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if "medical_license_number" in str(e.orig).lower():
                raise DuplicateLicense() from e
            raise AlreadyExists("This account already has a doctor profile") from e
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(request)
        self.db.refresh(profile)
        logger.info(f"✅ Admin {admin.id} approved doctor request {request.id}, profile {profile.id} created")

        self.notifier.push(
            request.account.fcm_tokens,
            "Congratulations! Your request has been approved.",
            "You can now sign in as a doctor and start managing your appointments.",
            {"type": "DOCTOR_REQUEST_APPROVED", "doctorRequestId": request.id},
        )
        return {
            "id": request.id,
            "status": request.status,
            "reviewedAt": request.reviewed_at,
            "reviewedBy": _reviewer(admin),
            "doctorId": profile.id,
            "provisioning": PROVISIONING_COMPLETE,
        }

    def reject(self, request_id: int, admin: Account, reason: str, notes: Optional[str] = None) -> dict:
        request = self._load(request_id)
        if request.status != REQUEST_PENDING:
            raise AlreadyReviewed()

        reviewed_at = to_db_timestamp(self.clock())
        try:
            if not self.repo.mark_reviewed_if_pending(
                self.db, request.id, REQUEST_REJECTED, admin.id, reviewed_at, notes, rejection_reason=reason
            ):
                raise AlreadyReviewed()
            self.repo.add_audit(
                self.db,
                AUDIT_VERIFICATION_CHANGE,
                "DoctorRequest",
                request.id,
                f"Doctor request rejected for account {request.account_id}",
                {"from": REQUEST_PENDING, "to": REQUEST_REJECTED, "reason": reason, "notes": notes},
                admin.id,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(request)
        logger.info(f"❌ Admin {admin.id} rejected doctor request {request.id}: {reason}")

        self.notifier.push(
            request.account.fcm_tokens,
            "Update on your doctor request",
            f"Your request has been rejected. Reason: {reason}",
            {"type": "DOCTOR_REQUEST_REJECTED", "doctorRequestId": request.id},
        )
        return {
            "id": request.id,
            "status": request.status,
            "reviewedAt": request.reviewed_at,
            "reviewedBy": _reviewer(admin),
            "rejectionReason": reason,
        }

    def update_admin_notes(self, request_id: int, admin: Account, notes: str) -> DoctorRequest:
        """Admin notes are the only field editable after a decision"""
        request = self._load(request_id)
        request.admin_notes = notes
        self.db.commit()
        self.db.refresh(request)
        logger.info(f"✅ Admin {admin.id} updated notes on doctor request {request.id}")
        return request

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats_summary(self) -> dict:
        now = self.clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        # Weeks start on Sunday
        start_of_week = start_of_day - timedelta(days=(start_of_day.weekday() + 1) % 7)
        start_of_month = start_of_day.replace(day=1)

        # First day of the month five months back: six calendar months including this one
        year, month = now.year, now.month - 5
        if month < 1:
            year, month = year - 1, month + 12
        trend_start = start_of_month.replace(year=year, month=month)

        day_ts = to_db_timestamp(start_of_day)
        week_ts = to_db_timestamp(start_of_week)
        month_ts = to_db_timestamp(start_of_month)
        trend_ts = to_db_timestamp(trend_start)

        counts = {REQUEST_PENDING: 0, REQUEST_APPROVED: 0, REQUEST_REJECTED: 0}
        period = {"today": 0, "thisWeek": 0, "thisMonth": 0}
        specialties: dict[str, dict] = {}
        trends: dict[tuple[int, int], dict] = {}

        rows = self.repo.status_rows(self.db)
        for status, request_specialties, requested_at in rows:
            counts[status] = counts.get(status, 0) + 1

            if requested_at is not None:
                if requested_at >= day_ts:
                    period["today"] += 1
                if requested_at >= week_ts:
                    period["thisWeek"] += 1
                if requested_at >= month_ts:
                    period["thisMonth"] += 1
                if requested_at >= trend_ts:
                    key = (requested_at.year, requested_at.month)
                    bucket = trends.setdefault(
                        key, {"year": key[0], "month": key[1], "total": 0, "approved": 0, "rejected": 0}
                    )
                    bucket["total"] += 1
                    if status in (REQUEST_APPROVED, REQUEST_REJECTED):
                        bucket[status] += 1

            for specialty in request_specialties or []:
                entry = specialties.setdefault(
                    specialty, {"specialty": specialty, "count": 0, "approved": 0, "pending": 0}
                )
                entry["count"] += 1
                if status in (REQUEST_APPROVED, REQUEST_PENDING):
                    entry[status] += 1

        total = len(rows)
        top_specialties = sorted(specialties.values(), key=lambda s: (-s["count"], s["specialty"]))[:10]

        return {
            "overview": {
                "total": total,
                "pending": counts[REQUEST_PENDING],
                "approved": counts[REQUEST_APPROVED],
                "rejected": counts[REQUEST_REJECTED],
                "approvalRate": round(counts[REQUEST_APPROVED] / total * 100, 1) if total else 0,
            },
            "period": period,
            "specialties": top_specialties,
            "trends": [trends[key] for key in sorted(trends)],
        }

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_approved_requests(self) -> dict:
        """
        Provision approved requests that have no doctor profile.

        Requests that cannot be provisioned (missing coordinates, license
        already taken) are returned to pending, or rejected as superseded when
        the account has since filed a newer pending request.

        Returns:
            Dict with checked/provisioned/compensated counts
        """
        result = {"checked": 0, "provisioned": 0, "compensated": 0}

        for request in self.repo.approved_without_profile(self.db):
            result["checked"] += 1
            request_id = request.id
            try:
                clinic = map_clinic(request.clinic)
                if self.repo.license_in_profiles(self.db, request.medical_license_number):
                    raise DuplicateLicense()

                verified_at = request.reviewed_at or to_db_timestamp(self.clock())
                profile = self._provision(request, clinic, request.reviewed_by, verified_at, request.admin_notes)
                self.repo.add_audit(
                    self.db,
                    AUDIT_APPROVAL_RECONCILED,
                    "DoctorRequest",
                    request_id,
                    f"Missing doctor profile provisioned for approved request {request_id}",
                    {"doctorProfileId": profile.id},
                    request.reviewed_by,
                )
                self.db.commit()
            except (ValidationError, DuplicateLicense, IntegrityError) as e:
                self.db.rollback()
                logger.warning(f"⚠️ Approved request {request_id} cannot be provisioned: {e}")
                self._compensate(request_id, str(e))
                result["compensated"] += 1
                continue

            result["provisioned"] += 1
            logger.info(f"✅ Reconciled approved request {request_id}: profile {profile.id} created")
            self.notifier.push(
                request.account.fcm_tokens,
                "Congratulations! Your request has been approved.",
                "You can now sign in as a doctor and start managing your appointments.",
                {"type": "DOCTOR_REQUEST_APPROVED", "doctorRequestId": request_id},
            )

        if result["checked"]:
            logger.info(f"📊 Approval reconciliation: {result}")
        return result

    def _compensate(self, request_id: int, cause: str):
        request = self._load(request_id)
        if self.repo.get_pending_for_account(self.db, request.account_id):
            target, reason = REQUEST_REJECTED, "Superseded by a newer request"
        else:
            target, reason = REQUEST_PENDING, None

        try:
            self.repo.reopen(self.db, request_id, target, reason)
            self.repo.add_audit(
                self.db,
                AUDIT_APPROVAL_COMPENSATED,
                "DoctorRequest",
                request_id,
                f"Approval of request {request_id} rolled back to {target}",
                {"from": REQUEST_APPROVED, "to": target, "cause": cause},
                None,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
