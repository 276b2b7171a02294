import itertools
import os
from datetime import date, datetime

# Configure the app before it is imported: throwaway database, no gateways
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
for _key in ("FIREBASE_SERVICE_ACCOUNT_PATH", "SMS_ACCOUNT_SID", "SMS_AUTH_TOKEN", "SMS_FROM_NUMBER"):
    os.environ.pop(_key, None)

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.orm import sessionmaker

from doctors_app import config
from doctors_app.database import Base, build_engine, get_db
from doctors_app.domain.appointments.service import AppointmentService
from doctors_app.domain.credentialing.service import CredentialingService
from doctors_app.main import app
from doctors_app.models import Account, Appointment, DoctorProfile, DoctorRequest
from doctors_app.services.notification_service import NotificationDispatcher

# Monday 10 March 2025, 09:00 in the clinics' timezone
FIXED_NOW = datetime(2025, 3, 10, 9, 0, tzinfo=config.APP_TIMEZONE)
SLOT_DAY = date(2025, 3, 12)


class FixedClock:
    """Injectable clock; tests move it by assigning ``now``"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def engine(tmp_path):
    test_engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(FIXED_NOW)


@pytest.fixture
def notifier():
    return NotificationDispatcher()


@pytest.fixture
def appointment_service(db, notifier, clock):
    return AppointmentService(db, notifier, clock)


@pytest.fixture
def other_request_service(session_factory, clock):
    """An AppointmentService on its own session, as a concurrent request would hold"""
    session = session_factory()
    yield AppointmentService(session, NotificationDispatcher(), clock)
    session.close()


@pytest.fixture
def credentialing_service(db, notifier, clock):
    return CredentialingService(db, notifier, clock)


@pytest.fixture
def make_account(db):
    counter = itertools.count(1)

    def _make(role="patient", verified=True, active=True, tokens=None, first_name="Awa", last_name=None):
        n = next(counter)
        account = Account(
            first_name=first_name,
            last_name=last_name or f"Diop{n}",
            phone=f"+22177000{n:04d}",
            role=role,
            is_active=active,
            is_phone_verified=verified,
            fcm_tokens=tokens if tokens is not None else [],
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    return _make


@pytest.fixture
def make_doctor(db, make_account):
    counter = itertools.count(1)

    def _make(account=None, fee=15000.0, license_number=None, **overrides):
        n = next(counter)
        account = account or make_account(role="doctor", first_name="Moussa", tokens=["doctor-token"])
        fields = {
            "account_id": account.id,
            "medical_license_number": license_number or f"SN-MED-{n:04d}",
            "specialties": ["Médecine générale"],
            "years_of_experience": 8,
            "education": [],
            "clinic": {
                "name": "Cabinet Médical Fann",
                "phone": "+221338001122",
                "address": {
                    "street": "Avenue Cheikh Anta Diop",
                    "city": "Dakar",
                    "country": "Sénégal",
                    "location": {"type": "Point", "coordinates": [-17.4, 14.7]},
                },
            },
            "consultation_fee": fee,
            "currency": "XOF",
            "languages": ["Français", "Wolof"],
            "verification_status": "approved",
            "is_active": True,
            "is_available": True,
        }
        fields.update(overrides)
        doctor = DoctorProfile(**fields)
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor

    return _make


@pytest.fixture
def make_appointment(db):
    """Insert an appointment directly, bypassing booking rules"""

    def _make(patient, doctor, day=SLOT_DAY, time="10:00", status="pending", **overrides):
        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            appointment_date=day,
            appointment_time=time,
            status=status,
            reason="Consultation de contrôle annuelle",
            payment_amount=doctor.consultation_fee,
            payment_currency=doctor.currency,
            **overrides,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make


def request_payload(**overrides) -> dict:
    """A complete, valid doctor upgrade request body"""
    payload = {
        "medicalLicenseNumber": "SN-12345",
        "specialties": ["Cardiologie"],
        "yearsOfExperience": 10,
        "education": [
            {"institution": "Université Cheikh Anta Diop", "degree": "Doctorat en médecine", "graduationYear": 2012}
        ],
        "consultationFee": 20000,
        "clinic": {
            "name": "Clinique du Plateau",
            "phone": "338221100",
            "address": {
                "street": "12 Rue Carnot",
                "city": "Dakar",
                "region": "Dakar",
                "coordinates": {"latitude": 14.7, "longitude": -17.4},
            },
        },
        "languages": ["Français"],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_request(db):
    """Insert a doctor request directly, in any state"""

    def _make(account, status="pending", clinic=None, license_number="SN-12345", **overrides):
        fields = {
            "account_id": account.id,
            "medical_license_number": license_number,
            "specialties": ["Cardiologie"],
            "years_of_experience": 10,
            "education": [{"institution": "UCAD", "degree": "Doctorat en médecine", "graduationYear": 2012}],
            "consultation_fee": 20000,
            "currency": "XOF",
            "clinic": clinic
            if clinic is not None
            else {
                "name": "Clinique du Plateau",
                "address": {
                    "street": "12 Rue Carnot",
                    "city": "Dakar",
                    "coordinates": {"latitude": 14.7, "longitude": -17.4},
                },
            },
            "languages": ["Français"],
            "status": status,
        }
        fields.update(overrides)
        request = DoctorRequest(**fields)
        db.add(request)
        db.commit()
        db.refresh(request)
        return request

    return _make


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(account) -> dict:
        token = jwt.encode({"userId": account.id}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
        return {"Authorization": f"Bearer {token}"}

    return _headers
