class FinanceError(Exception):
    """Base error carrying the outward error code and HTTP status."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(FinanceError):
    code = "VALIDATION_ERROR"
    status_code = 400


class AuthenticationError(FinanceError):
    code = "AUTHENTICATION_ERROR"
    status_code = 401


class Conflict(FinanceError):
    code = "CONFLICT"
    status_code = 409


class NotFound(FinanceError):
    code = "NOT_FOUND"
    status_code = 404


class InsufficientFunds(FinanceError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 400


class InternalError(FinanceError):
    code = "INTERNAL_ERROR"
    status_code = 500


def error_payload(code: str, message: str) -> dict[str, object]:
    return {"success": False, "error": {"code": code, "message": message}}
