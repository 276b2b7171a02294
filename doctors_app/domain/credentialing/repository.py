"""Credentialing repository - Database operations for doctor requests and profiles"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import REQUEST_APPROVED, REQUEST_PENDING, Account, AuditLog, DoctorProfile, DoctorRequest


class CredentialingRepository:
    """Repository for doctor request database operations"""

    @staticmethod
    def get_by_id(db: Session, request_id: int) -> Optional[DoctorRequest]:
        return (
            db.query(DoctorRequest)
            .options(joinedload(DoctorRequest.account), joinedload(DoctorRequest.reviewer))
            .filter(DoctorRequest.id == request_id)
            .first()
        )

    @staticmethod
    def get_pending_for_account(db: Session, account_id: int) -> Optional[DoctorRequest]:
        return (
            db.query(DoctorRequest)
            .filter(DoctorRequest.account_id == account_id, DoctorRequest.status == REQUEST_PENDING)
            .first()
        )

    @staticmethod
    def get_profile_for_account(db: Session, account_id: int) -> Optional[DoctorProfile]:
        return db.query(DoctorProfile).filter(DoctorProfile.account_id == account_id).first()

    @staticmethod
    def license_in_profiles(db: Session, license_number: str) -> bool:
        return (
            db.query(DoctorProfile.id)
            .filter(DoctorProfile.medical_license_number == license_number)
            .first()
            is not None
        )

    @staticmethod
    def license_pending_elsewhere(db: Session, license_number: str, account_id: int) -> bool:
        """Another account already has a pending request with this license number"""
        return (
            db.query(DoctorRequest.id)
            .filter(
                DoctorRequest.medical_license_number == license_number,
                DoctorRequest.status == REQUEST_PENDING,
                DoctorRequest.account_id != account_id,
            )
            .first()
            is not None
        )

    @staticmethod
    def create_request(db: Session, **request_data) -> DoctorRequest:
        request = DoctorRequest(**request_data)
        db.add(request)
        db.commit()
        db.refresh(request)
        return request

    @staticmethod
    def list_requests(
        db: Session, status: Optional[str], offset: int, limit: int
    ) -> tuple[list[DoctorRequest], int]:
        """Requests, newest first"""
        query = db.query(DoctorRequest)
        if status:
            query = query.filter(DoctorRequest.status == status)

        total = query.count()
        items = (
            query.options(joinedload(DoctorRequest.account), joinedload(DoctorRequest.reviewer))
            .order_by(DoctorRequest.requested_at.desc(), DoctorRequest.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    @staticmethod
    def mark_reviewed_if_pending(
        db: Session,
        request_id: int,
        status: str,
        reviewer_id: int,
        reviewed_at: datetime,
        notes: Optional[str],
        rejection_reason: Optional[str] = None,
    ) -> int:
        """Record the decision only while the request is still pending"""
        return (
            db.query(DoctorRequest)
            .filter(DoctorRequest.id == request_id, DoctorRequest.status == REQUEST_PENDING)
            .update(
                {
                    DoctorRequest.status: status,
                    DoctorRequest.reviewed_at: reviewed_at,
                    DoctorRequest.reviewed_by: reviewer_id,
                    DoctorRequest.admin_notes: notes or "",
                    DoctorRequest.rejection_reason: rejection_reason,
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def reopen(db: Session, request_id: int, status: str, rejection_reason: Optional[str] = None) -> int:
        """Move an approved request back (used when its provisioning cannot be completed)"""
        return (
            db.query(DoctorRequest)
            .filter(DoctorRequest.id == request_id, DoctorRequest.status == REQUEST_APPROVED)
            .update(
                {
                    DoctorRequest.status: status,
                    DoctorRequest.reviewed_at: None,
                    DoctorRequest.reviewed_by: None,
                    DoctorRequest.rejection_reason: rejection_reason,
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def add_profile(db: Session, profile: DoctorProfile) -> DoctorProfile:
        db.add(profile)
        db.flush()
        return profile

    @staticmethod
    def set_role(db: Session, account_id: int, role: str) -> int:
        return (
            db.query(Account)
            .filter(Account.id == account_id)
            .update({Account.role: role}, synchronize_session=False)
        )

    @staticmethod
    def add_audit(
        db: Session,
        action: str,
        entity_type: str,
        entity_id: int,
        description: str,
        details: Optional[dict] = None,
        performed_by: Optional[int] = None,
    ) -> AuditLog:
        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            details=details or {},
            performed_by=performed_by,
        )
        db.add(entry)
        return entry

    @staticmethod
    def approved_without_profile(db: Session) -> list[DoctorRequest]:
        """Approved requests whose account never received its doctor profile"""
        has_profile = (
            db.query(DoctorProfile.id).filter(DoctorProfile.account_id == DoctorRequest.account_id).exists()
        )
        return (
            db.query(DoctorRequest)
            .filter(DoctorRequest.status == REQUEST_APPROVED, ~has_profile)
            .order_by(DoctorRequest.id.asc())
            .all()
        )

    @staticmethod
    def status_rows(db: Session) -> list[tuple]:
        """(status, specialties, requested_at) for every request"""
        return db.query(DoctorRequest.status, DoctorRequest.specialties, DoctorRequest.requested_at).all()
