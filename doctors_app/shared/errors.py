"""Domain error taxonomy shared by the scheduling and credentialing engines.

Every error carries a stable ``code`` and the HTTP status the API answers
with. Engines raise these; ``main.py`` renders them as
``{"detail": ..., "code": ...}``.
"""

from typing import Optional


class DomainError(Exception):
    code = "DOMAIN_ERROR"
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class NotFound(DomainError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Resource not found"


class Forbidden(DomainError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Access denied"


class InvalidTransition(DomainError):
    code = "INVALID_TRANSITION"
    status_code = 409
    default_message = "This status change is not allowed"


class CancellationCutoff(DomainError):
    code = "CANCELLATION_CUTOFF"
    status_code = 409
    default_message = "Appointments cannot be cancelled this close to the scheduled time"


class SlotTaken(DomainError):
    code = "SLOT_TAKEN"
    status_code = 409
    default_message = "This time slot is no longer available"


class PatientConflict(DomainError):
    code = "PATIENT_CONFLICT"
    status_code = 409
    default_message = "You already have an appointment at this time"


class InvalidSchedule(DomainError):
    code = "INVALID_SCHEDULE"
    status_code = 400
    default_message = "Appointment date and time must be in the future"


class DoctorUnavailable(DomainError):
    code = "DOCTOR_UNAVAILABLE"
    status_code = 409
    default_message = "This doctor is not available at the moment"


class ReviewExists(DomainError):
    code = "REVIEW_EXISTS"
    status_code = 409
    default_message = "This appointment has already been reviewed"


class AlreadyReviewed(DomainError):
    code = "ALREADY_REVIEWED"
    status_code = 409
    default_message = "This request has already been processed"


class DuplicateLicense(DomainError):
    code = "DUPLICATE_LICENSE"
    status_code = 409
    default_message = "This medical license number is already in use"


class AlreadyExists(DomainError):
    code = "ALREADY_EXISTS"
    status_code = 409
    default_message = "Resource already exists"


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    status_code = 422
    default_message = "Invalid data"
