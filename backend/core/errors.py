"""
Error taxonomy shared by the services and the HTTP layer.

Each error carries the HTTP status it maps to and a machine-readable code, so the
exception handlers in main.py can render them without knowing every subclass.
"""

from typing import Any, Dict, List, Optional


class PortfolioError(Exception):
    status_code: int = 500
    error: str = "server_error"

    def __init__(self, detail: str = "", fields: Optional[List[Dict[str, Any]]] = None):
        super().__init__(detail)
        self.detail = detail
        self.fields = fields or []

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error, "detail": self.detail}
        if self.fields:
            body["fields"] = self.fields
        return body


class ValidationError(PortfolioError):
    status_code = 400
    error = "validation_error"


class PayloadTooLarge(ValidationError):
    status_code = 413
    error = "payload_too_large"


class AlreadySet(ValidationError):
    error = "already_set"


class InvalidCredentials(PortfolioError):
    status_code = 401
    error = "invalid_credentials"


class NotAuthenticated(PortfolioError):
    status_code = 401
    error = "not_authenticated"


class NotFound(PortfolioError):
    status_code = 404
    error = "not_found"


class CSRFFailure(PortfolioError):
    status_code = 403
    error = "csrf_failure"

    def __init__(self, reason: str, detail: str = ""):
        super().__init__(detail or "CSRF validation failed. Please refresh the page and try again.")
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["reason"] = self.reason
        return body


class ServerError(PortfolioError):
    status_code = 500
    error = "server_error"

    def __init__(self, detail: str = "Internal server error"):
        super().__init__(detail)
