"""
Clinic error taxonomy.

Services raise these; ``main.py`` turns them into JSON responses carrying a
machine-readable ``code`` so the client can show a specific message.
"""


class ClinicError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(ClinicError):
    status_code = 400
    code = "validation_error"


class InvalidDate(ValidationError):
    code = "invalid_date"


class NotFoundError(ClinicError):
    status_code = 404
    code = "not_found"


class DoctorNotFound(NotFoundError):
    code = "doctor_not_found"


class ForbiddenError(ClinicError):
    status_code = 403
    code = "forbidden"


class ConflictError(ClinicError):
    status_code = 409
    code = "conflict"


class SlotConflict(ConflictError):
    code = "slot_conflict"


class PaymentRequiredError(ClinicError):
    status_code = 402
    code = "payment_required"


class StorageError(ClinicError):
    status_code = 502
    code = "storage_error"
