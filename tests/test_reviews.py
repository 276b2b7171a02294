import pytest

from doctors_app.domain.appointments.schemas import AppointmentCreate, CompleteRequest
from doctors_app.models import DoctorProfile
from doctors_app.shared.errors import Forbidden, InvalidTransition, ReviewExists

from .conftest import SLOT_DAY


def test_review_stored_and_rating_recomputed(appointment_service, db, make_account, make_doctor, make_appointment):
    patient = make_account()
    doctor = make_doctor()
    appointment = make_appointment(patient, doctor, status="completed")

    reviewed = appointment_service.add_review(appointment.id, patient, 4, "Très bon accueil")

    assert reviewed.review_rating == 4
    assert reviewed.review_comment == "Très bon accueil"
    assert reviewed.review_date is not None
    db.expire_all()
    profile = db.get(DoctorProfile, doctor.id)
    assert profile.average_rating == 4.0
    assert profile.total_reviews == 1


def test_average_rounds_half_up_to_one_decimal(appointment_service, db, make_account, make_doctor, make_appointment):
    doctor = make_doctor()
    for time, rating in [("08:00", 4), ("09:00", 4), ("10:00", 4), ("11:00", 5)]:
        patient = make_account()
        appointment = make_appointment(patient, doctor, time=time, status="completed")
        appointment_service.add_review(appointment.id, patient, rating)

    db.expire_all()
    profile = db.get(DoctorProfile, doctor.id)
    # 4.25 -> 4.3 (half-up, not banker's rounding)
    assert profile.average_rating == 4.3
    assert profile.total_reviews == 4


def test_second_review_fails_and_rating_is_unchanged(
    appointment_service, db, make_account, make_doctor, make_appointment
):
    patient = make_account()
    doctor = make_doctor()
    appointment = make_appointment(patient, doctor, status="completed")
    appointment_service.add_review(appointment.id, patient, 5)

    with pytest.raises(ReviewExists):
        appointment_service.add_review(appointment.id, patient, 1)

    db.expire_all()
    profile = db.get(DoctorProfile, doctor.id)
    assert profile.average_rating == 5.0
    assert profile.total_reviews == 1


def test_conditional_update_rejects_concurrent_second_review(
    appointment_service, db, make_account, make_doctor, make_appointment
):
    patient = make_account()
    appointment = make_appointment(patient, make_doctor(), status="completed")
    repo = appointment_service.repo

    first = repo.set_review_if_absent(db, appointment.id, 5, None, appointment.created_at)
    second = repo.set_review_if_absent(db, appointment.id, 1, None, appointment.created_at)
    db.commit()

    assert (first, second) == (1, 0)


def test_review_locks_the_doctor_before_writing(
    appointment_service, monkeypatch, make_account, make_doctor, make_appointment
):
    patient = make_account()
    appointment = make_appointment(patient, make_doctor(), status="completed")
    repo = appointment_service.repo
    real_lock, real_review = repo.lock_doctor, repo.set_review_if_absent
    calls = []

    def lock(*args):
        calls.append("lock")
        return real_lock(*args)

    def review(*args):
        calls.append("review")
        return real_review(*args)

    monkeypatch.setattr(repo, "lock_doctor", lock)
    monkeypatch.setattr(repo, "set_review_if_absent", review)

    appointment_service.add_review(appointment.id, patient, 4)

    assert calls == ["lock", "review"]


def test_concurrent_reviews_are_both_counted(
    appointment_service, other_request_service, db, monkeypatch, make_account, make_doctor, make_appointment
):
    doctor = make_doctor()
    first_patient, second_patient = make_account(), make_account()
    first = make_appointment(first_patient, doctor, time="08:00", status="completed")
    second = make_appointment(second_patient, doctor, time="09:00", status="completed")
    real_lock = appointment_service.repo.lock_doctor

    def lock_after_other_review(session, doctor_id):
        other_request_service.add_review(second.id, second_patient, 4)
        return real_lock(session, doctor_id)

    monkeypatch.setattr(appointment_service.repo, "lock_doctor", lock_after_other_review)

    appointment_service.add_review(first.id, first_patient, 5)

    db.expire_all()
    profile = db.get(DoctorProfile, doctor.id)
    assert profile.total_reviews == 2
    assert profile.average_rating == 4.5


def test_only_the_patient_can_review(appointment_service, make_account, make_doctor, make_appointment):
    doctor = make_doctor()
    appointment = make_appointment(make_account(), doctor, status="completed")

    with pytest.raises(Forbidden):
        appointment_service.add_review(appointment.id, make_account(), 5)
    with pytest.raises(Forbidden):
        appointment_service.add_review(appointment.id, doctor.account, 5)


@pytest.mark.parametrize("status", ["pending", "confirmed", "cancelled"])
def test_only_completed_appointments_can_be_reviewed(
    appointment_service, make_account, make_doctor, make_appointment, status
):
    patient = make_account()
    appointment = make_appointment(patient, make_doctor(), status=status)

    with pytest.raises(InvalidTransition):
        appointment_service.add_review(appointment.id, patient, 5)


def test_review_notifies_doctor(appointment_service, notifier, make_account, make_doctor, make_appointment):
    patient = make_account()
    appointment = make_appointment(patient, make_doctor(), status="completed")

    appointment_service.add_review(appointment.id, patient, 3)

    _, _, kwargs = notifier.pending[-1]
    assert kwargs["tokens"] == ["doctor-token"]
    assert kwargs["data"]["type"] == "NEW_REVIEW"


def test_full_consultation_scenario(appointment_service, make_account, make_doctor):
    patient = make_account()
    doctor = make_doctor(fee=15000)

    appointment = appointment_service.create(
        patient,
        AppointmentCreate(
            doctorId=doctor.id,
            appointmentDate=SLOT_DAY,
            appointmentTime="10:00",
            reason="Fièvre et courbatures depuis hier",
        ),
    )
    appointment_service.confirm(appointment.id, doctor.account)
    appointment_service.complete(appointment.id, doctor.account, CompleteRequest(diagnosis="flu"))
    appointment_service.add_review(appointment.id, patient, 4)

    stats = appointment_service.get_doctor_stats(doctor.account)
    assert stats["stats"]["totalAppointments"] == 1
    assert stats["stats"]["totalPatients"] == 1
    assert stats["stats"]["totalIncome"] == 15000
    assert stats["stats"]["averageRating"] == 4.0
    assert stats["stats"]["totalReviews"] == 1
    assert stats["appointments"] == {"total": 1, "byStatus": {"completed": 1}}

    with pytest.raises(ReviewExists):
        appointment_service.add_review(appointment.id, patient, 2)
