"""
Error taxonomy shared by the services and the HTTP layer.

Every error carries the HTTP status it maps to; main.py renders them as
{"success": false, "error": ...}.
"""
from typing import Optional


class MobipayError(Exception):
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(MobipayError):
    """Bad input shape or range. `errors` holds per-field messages."""

    status_code = 400

    def __init__(self, message: str, errors: Optional[list[dict]] = None):
        super().__init__(message)
        self.errors = errors or []


class InvalidChargeError(ValidationError):
    pass


class InvalidPercentageError(ValidationError):
    pass


class BusinessRuleError(MobipayError):
    status_code = 400


class NotFoundError(MobipayError):
    status_code = 404


class UnknownTransactionError(NotFoundError):
    pass


class GatewayError(MobipayError):
    status_code = 502

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code


class PersistenceError(MobipayError):
    status_code = 500
