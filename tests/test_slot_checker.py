from datetime import date

from doctors_app.domain.appointments import slot_checker

from .conftest import SLOT_DAY


def test_free_slot_is_available(db, make_doctor):
    doctor = make_doctor()

    assert slot_checker.is_slot_available(db, doctor.id, SLOT_DAY, "10:00")


def test_pending_and_confirmed_appointments_hold_the_slot(db, make_account, make_doctor, make_appointment):
    doctor = make_doctor()
    make_appointment(make_account(), doctor, time="10:00", status="pending")
    make_appointment(make_account(), doctor, time="11:00", status="confirmed")

    assert not slot_checker.is_slot_available(db, doctor.id, SLOT_DAY, "10:00")
    assert not slot_checker.is_slot_available(db, doctor.id, SLOT_DAY, "11:00")


def test_closed_appointments_release_the_slot(db, make_account, make_doctor, make_appointment):
    doctor = make_doctor()
    for time, status in [("08:00", "cancelled"), ("09:00", "completed"), ("10:00", "rejected"), ("11:00", "no_show")]:
        make_appointment(make_account(), doctor, time=time, status=status)

    for time in ("08:00", "09:00", "10:00", "11:00"):
        assert slot_checker.is_slot_available(db, doctor.id, SLOT_DAY, time)


def test_excluded_appointment_does_not_conflict_with_itself(db, make_account, make_doctor, make_appointment):
    doctor = make_doctor()
    appointment = make_appointment(make_account(), doctor)

    assert slot_checker.is_slot_available(
        db, doctor.id, SLOT_DAY, "10:00", exclude_appointment_id=appointment.id
    )


def test_other_doctor_and_other_day_do_not_conflict(db, make_account, make_doctor, make_appointment):
    doctor = make_doctor()
    other = make_doctor()
    make_appointment(make_account(), doctor)

    assert slot_checker.is_slot_available(db, other.id, SLOT_DAY, "10:00")
    assert slot_checker.is_slot_available(db, doctor.id, date(2025, 3, 13), "10:00")


def test_patient_conflict_across_doctors(db, make_account, make_doctor, make_appointment):
    patient = make_account()
    make_appointment(patient, make_doctor(), time="10:00")

    assert slot_checker.has_patient_conflict(db, patient.id, SLOT_DAY, "10:00")
    assert not slot_checker.has_patient_conflict(db, patient.id, SLOT_DAY, "10:30")


def test_booked_slots_are_sorted_and_only_active(db, make_account, make_doctor, make_appointment):
    doctor = make_doctor()
    make_appointment(make_account(), doctor, time="14:30")
    make_appointment(make_account(), doctor, time="09:00", status="confirmed")
    make_appointment(make_account(), doctor, time="11:00", status="cancelled")

    assert slot_checker.get_booked_slots(db, doctor.id, SLOT_DAY) == ["09:00", "14:30"]
