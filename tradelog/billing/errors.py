"""Typed errors raised by the billing core.

Each carries the HTTP status the JSON surfaces answer with; blueprints turn
them into ``{"error": message}`` responses.
"""


class BillingError(Exception):
    status_code = 400
    default_message = "Billing request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message}


class AuthenticationError(BillingError):
    status_code = 401
    default_message = "Unauthorized"


class ValidationError(BillingError):
    status_code = 400
    default_message = "Invalid request data"


class WebhookSignatureError(ValidationError):
    default_message = "Invalid signature"


class BusinessRuleError(BillingError):
    status_code = 400


class ForbiddenError(BillingError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(BillingError):
    status_code = 404
    default_message = "Not found"


class ConflictError(BillingError):
    status_code = 409


class PersistenceError(BillingError):
    status_code = 500
    default_message = "DB error"


class ConfigurationError(BillingError):
    status_code = 500
    default_message = "Server config error"


class ProviderError(BillingError):
    status_code = 502
    default_message = "Stripe error"
