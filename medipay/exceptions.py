"""
Error taxonomy for the payment core.

Each error knows the HTTP status it maps to and the message that is safe to
show a client. Handlers in ``medipay.main`` turn them into JSON responses.
"""
from typing import Optional


class PaymentError(Exception):
    status_code = 500

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(PaymentError):
    status_code = 400


class ConfigurationError(PaymentError):
    status_code = 500


class SignatureMismatch(PaymentError):
    status_code = 400

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class GatewayError(PaymentError):
    status_code = 500


class NotFoundError(PaymentError):
    status_code = 404
