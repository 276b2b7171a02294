from datetime import datetime

import pytest

from doctors_app.domain.credentialing.schemas import DoctorRequestCreate
from doctors_app.domain.credentialing.service import (
    AUDIT_ROLE_CHANGE,
    AUDIT_VERIFICATION_CHANGE,
    map_clinic,
    map_education,
)
from doctors_app.models import Account, AuditLog, DoctorProfile, DoctorRequest
from doctors_app.shared.errors import (
    AlreadyExists,
    AlreadyReviewed,
    DuplicateLicense,
    Forbidden,
    NotFound,
    ValidationError,
)

from .conftest import request_payload


def submit(service, account, **overrides):
    return service.submit(account, DoctorRequestCreate(**request_payload(**overrides)))


# ----------------------------------------------------------------------
# Mapping helpers
# ----------------------------------------------------------------------


def test_map_clinic_builds_geo_point_without_touching_the_source():
    clinic = {"name": "Clinique", "address": {"street": "12 Rue Carnot", "coordinates": {"latitude": 14.7, "longitude": -17.4}}}

    mapped = map_clinic(clinic)

    assert mapped["address"]["location"] == {"type": "Point", "coordinates": [-17.4, 14.7]}
    assert "coordinates" not in mapped["address"]
    assert clinic["address"]["coordinates"] == {"latitude": 14.7, "longitude": -17.4}


@pytest.mark.parametrize(
    "coordinates",
    [None, {"latitude": 14.7}, {"latitude": 95, "longitude": -17.4}, {"latitude": "north", "longitude": 1}],
)
def test_map_clinic_rejects_bad_coordinates(coordinates):
    clinic = {"name": "Clinique", "address": {"street": "12 Rue Carnot"}}
    if coordinates is not None:
        clinic["address"]["coordinates"] = coordinates

    with pytest.raises(ValidationError):
        map_clinic(clinic)


def test_map_education_renames_year_and_defaults_country():
    mapped = map_education([{"institution": "UCAD", "degree": "MD", "graduationYear": 2012}])

    assert mapped == [{"degree": "MD", "institution": "UCAD", "year": 2012, "country": "Sénégal"}]


# ----------------------------------------------------------------------
# Submission
# ----------------------------------------------------------------------


def test_submit_creates_pending_request(credentialing_service, make_account):
    account = make_account()

    request = submit(credentialing_service, account, medicalLicenseNumber="  SN-12345 ")

    assert request.status == "pending"
    assert request.medical_license_number == "SN-12345"
    assert request.currency == "XOF"
    assert request.clinic["phone"] == "+221338221100"
    assert request.clinic["address"]["coordinates"] == {"latitude": 14.7, "longitude": -17.4}
    assert request.requested_at == datetime(2025, 3, 10, 9, 0)


def test_submit_twice_is_refused(credentialing_service, make_account):
    account = make_account()
    submit(credentialing_service, account)

    with pytest.raises(AlreadyExists):
        submit(credentialing_service, account, medicalLicenseNumber="SN-99999")


def test_existing_doctor_cannot_apply(credentialing_service, make_doctor):
    doctor = make_doctor()

    with pytest.raises(AlreadyExists):
        submit(credentialing_service, doctor.account, medicalLicenseNumber="SN-99999")


def test_admin_and_unverified_accounts_cannot_apply(credentialing_service, make_account):
    with pytest.raises(Forbidden):
        submit(credentialing_service, make_account(role="admin"))
    with pytest.raises(Forbidden):
        submit(credentialing_service, make_account(verified=False))


def test_license_already_on_a_profile_is_refused(credentialing_service, make_account, make_doctor):
    make_doctor(license_number="SN-12345")

    with pytest.raises(DuplicateLicense):
        submit(credentialing_service, make_account())


def test_license_pending_for_another_account_is_refused(credentialing_service, make_account):
    submit(credentialing_service, make_account())

    with pytest.raises(DuplicateLicense):
        submit(credentialing_service, make_account())


def test_rejected_applicant_can_apply_again(credentialing_service, make_account, make_request):
    account = make_account()
    make_request(account, status="rejected")

    request = submit(credentialing_service, account)

    assert request.status == "pending"


# ----------------------------------------------------------------------
# Approval
# ----------------------------------------------------------------------


def test_approve_provisions_doctor_profile(credentialing_service, db, notifier, make_account, make_request):
    applicant = make_account(tokens=["applicant-token"])
    admin = make_account(role="admin")
    request = make_request(applicant)

    result = credentialing_service.approve(request.id, admin, "Documents verified")

    assert result["status"] == "approved"
    assert result["provisioning"] == "complete"
    assert result["reviewedBy"] == {"id": admin.id, "name": admin.full_name}

    db.expire_all()
    profile = db.query(DoctorProfile).filter_by(account_id=applicant.id).one()
    assert result["doctorId"] == profile.id
    assert profile.verification_status == "approved"
    assert profile.verified_by == admin.id
    assert profile.verification_notes == "Documents verified"
    assert profile.clinic["address"]["location"] == {"type": "Point", "coordinates": [-17.4, 14.7]}
    assert profile.education == [
        {"degree": "Doctorat en médecine", "institution": "UCAD", "year": 2012, "country": "Sénégal"}
    ]
    assert profile.is_active and profile.is_available
    assert db.get(Account, applicant.id).role == "doctor"

    stored = db.get(DoctorRequest, request.id)
    assert stored.reviewed_by == admin.id
    assert stored.admin_notes == "Documents verified"

    actions = sorted(a.action for a in db.query(AuditLog).all())
    assert actions == [AUDIT_VERIFICATION_CHANGE, AUDIT_ROLE_CHANGE]

    kind, _, kwargs = notifier.pending[-1]
    assert kind == "push"
    assert kwargs["tokens"] == ["applicant-token"]
    assert kwargs["data"]["type"] == "DOCTOR_REQUEST_APPROVED"


def test_second_approval_is_refused(credentialing_service, db, make_account, make_request):
    admin = make_account(role="admin")
    request = make_request(make_account())
    credentialing_service.approve(request.id, admin)

    with pytest.raises(AlreadyReviewed):
        credentialing_service.approve(request.id, admin)

    assert db.query(DoctorProfile).count() == 1


def test_rejected_request_cannot_be_approved(credentialing_service, db, make_account, make_request):
    admin = make_account(role="admin")
    request = make_request(make_account())
    credentialing_service.reject(request.id, admin, "License could not be verified")

    with pytest.raises(AlreadyReviewed):
        credentialing_service.approve(request.id, admin)

    assert db.query(DoctorProfile).count() == 0


def test_approval_without_coordinates_leaves_request_pending(credentialing_service, db, make_account, make_request):
    applicant = make_account()
    request = make_request(applicant, clinic={"name": "Clinique", "address": {"street": "12 Rue Carnot", "city": "Dakar"}})

    with pytest.raises(ValidationError):
        credentialing_service.approve(request.id, make_account(role="admin"))

    db.expire_all()
    assert db.get(DoctorRequest, request.id).status == "pending"
    assert db.get(Account, applicant.id).role == "patient"
    assert db.query(DoctorProfile).count() == 0


def test_failed_provisioning_rolls_back_the_decision(
    credentialing_service, db, monkeypatch, make_account, make_request
):
    applicant = make_account()
    request = make_request(applicant)

    def boom(db, profile):
        raise RuntimeError("database went away")

    monkeypatch.setattr(credentialing_service.repo, "add_profile", boom)

    with pytest.raises(RuntimeError):
        credentialing_service.approve(request.id, make_account(role="admin"))

    db.expire_all()
    assert db.get(DoctorRequest, request.id).status == "pending"
    assert db.get(Account, applicant.id).role == "patient"
    assert db.query(AuditLog).count() == 0


def test_approval_with_license_now_taken_is_refused(credentialing_service, db, make_account, make_doctor, make_request):
    request = make_request(make_account())
    make_doctor(license_number="SN-12345")

    with pytest.raises(DuplicateLicense):
        credentialing_service.approve(request.id, make_account(role="admin"))

    db.expire_all()
    assert db.get(DoctorRequest, request.id).status == "pending"


def test_unknown_request(credentialing_service, make_account):
    with pytest.raises(NotFound):
        credentialing_service.approve(999, make_account(role="admin"))


# ----------------------------------------------------------------------
# Rejection and notes
# ----------------------------------------------------------------------


def test_reject_records_reason_and_notifies(credentialing_service, db, notifier, make_account, make_request):
    applicant = make_account(tokens=["applicant-token"])
    admin = make_account(role="admin")
    request = make_request(applicant)

    result = credentialing_service.reject(request.id, admin, "License could not be verified")

    assert result["status"] == "rejected"
    assert result["rejectionReason"] == "License could not be verified"
    db.expire_all()
    assert db.get(DoctorRequest, request.id).rejection_reason == "License could not be verified"
    assert db.get(Account, applicant.id).role == "patient"
    audit = db.query(AuditLog).one()
    assert audit.action == AUDIT_VERIFICATION_CHANGE
    assert audit.details["to"] == "rejected"

    _, _, kwargs = notifier.pending[-1]
    assert "License could not be verified" in kwargs["body"]


def test_admin_notes_editable_after_decision(credentialing_service, make_account, make_request):
    admin = make_account(role="admin")
    request = make_request(make_account())
    credentialing_service.reject(request.id, admin, "License could not be verified")

    updated = credentialing_service.update_admin_notes(request.id, admin, "Called the applicant")

    assert updated.admin_notes == "Called the applicant"
    assert updated.status == "rejected"


# ----------------------------------------------------------------------
# Admin queries
# ----------------------------------------------------------------------


def test_list_requests_paginates_and_filters(credentialing_service, make_account, make_request):
    make_request(make_account(), requested_at=datetime(2025, 3, 1))
    make_request(make_account(), requested_at=datetime(2025, 3, 2))
    newest = make_request(make_account(), status="rejected", requested_at=datetime(2025, 3, 3))

    page = credentialing_service.list_requests(page=1, limit=2)
    assert [r.id for r in page["requests"]][0] == newest.id
    assert page["pagination"] == {"current": 1, "total": 2, "count": 2, "totalRequests": 3}

    pending = credentialing_service.list_requests(status="pending")
    assert pending["pagination"]["totalRequests"] == 2


def test_get_by_id_includes_doctor_stats_once_approved(
    credentialing_service, make_account, make_request, make_appointment
):
    admin = make_account(role="admin")
    request = make_request(make_account())

    before = credentialing_service.get_by_id(request.id)
    assert before["doctorId"] is None and before["stats"] is None

    credentialing_service.approve(request.id, admin)
    profile = credentialing_service.repo.get_profile_for_account(credentialing_service.db, request.account_id)
    make_appointment(make_account(), profile, time="09:00", status="completed")
    make_appointment(make_account(), profile, time="10:00")

    after = credentialing_service.get_by_id(request.id)
    assert after["doctorId"] == profile.id
    assert after["stats"] == {
        "totalAppointments": 2,
        "completedAppointments": 1,
        "appointmentsByStatus": {"completed": 1, "pending": 1},
        "successRate": 50.0,
    }


def test_stats_summary(credentialing_service, make_account, make_request):
    # Clock: Monday 10 March 2025; the week started on Sunday 9 March
    make_request(make_account(), requested_at=datetime(2025, 3, 10, 8, 0))
    make_request(make_account(), status="approved", requested_at=datetime(2025, 3, 9, 12, 0))
    make_request(make_account(), status="rejected", requested_at=datetime(2025, 3, 2, 12, 0))
    make_request(
        make_account(), status="approved", requested_at=datetime(2025, 1, 15), specialties=["Pédiatrie"]
    )
    make_request(make_account(), requested_at=datetime(2024, 6, 1))

    stats = credentialing_service.stats_summary()

    assert stats["overview"] == {"total": 5, "pending": 2, "approved": 2, "rejected": 1, "approvalRate": 40.0}
    assert stats["period"] == {"today": 1, "thisWeek": 2, "thisMonth": 3}
    assert stats["specialties"] == [
        {"specialty": "Cardiologie", "count": 4, "approved": 1, "pending": 2},
        {"specialty": "Pédiatrie", "count": 1, "approved": 1, "pending": 0},
    ]
    assert stats["trends"] == [
        {"year": 2025, "month": 1, "total": 1, "approved": 1, "rejected": 0},
        {"year": 2025, "month": 3, "total": 3, "approved": 1, "rejected": 1},
    ]
