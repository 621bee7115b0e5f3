"""
Billing error taxonomy.

Every error the billing core raises derives from BillingError and carries the
HTTP status it maps to by default. Endpoints may still pick a different status
for a given operation (e.g. a missing record on /verify is a 400).
"""


class BillingError(Exception):
    status_code: int = 500
    default_message: str = "Billing error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BillingError):
    status_code = 422
    default_message = "Invalid input"


class NotFoundError(BillingError):
    status_code = 404
    default_message = "Not found"


class InvalidPlan(NotFoundError):
    status_code = 400
    default_message = "Invalid plan type"


class UserNotFound(NotFoundError):
    default_message = "User not found"


class RecordNotFound(NotFoundError):
    default_message = "Payment record not found"


class PendingNotFound(NotFoundError):
    default_message = "Pending payment not found"


class ConflictError(BillingError):
    status_code = 409
    default_message = "Conflict"


class AlreadyPremium(ConflictError):
    default_message = "User is already premium"


class VerificationError(BillingError):
    status_code = 400
    default_message = "Payment verification failed"


class VerificationFailed(VerificationError):
    pass


class GatewayError(BillingError):
    status_code = 502
    default_message = "Payment gateway error"


class InternalError(BillingError):
    status_code = 500
    default_message = "Internal error"
