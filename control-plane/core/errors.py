# control-plane/core/errors.py
"""
Engine error hierarchy

Every failure an operation can report to its caller derives from EngineError.
The API layer maps them onto the standard ErrorResponse envelope using
`status_code` and `error_code`.
"""

from typing import Optional


class EngineError(Exception):
    """Base class for all access engine errors"""

    status_code = 500
    error_code = "ENGINE_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_detail(self) -> dict:
        detail = {"error": self.message, "error_code": self.error_code}
        if self.details:
            detail["details"] = self.details
        return detail


class ValidationError(EngineError):
    """Malformed rule value, CIDR, port range or configuration input"""
    status_code = 422
    error_code = "VALIDATION_ERROR"


class NotFoundError(EngineError):
    """Referenced id does not exist"""
    status_code = 404
    error_code = "NOT_FOUND"


class ConfigExpired(NotFoundError):
    """Session configuration artifact is past its expiry"""
    status_code = 410
    error_code = "CONFIG_EXPIRED"


class ConflictError(EngineError):
    """Concurrent modification, duplicate assignment or terminal-state violation"""
    status_code = 409
    error_code = "CONFLICT"


class AuthorizationDenied(EngineError):
    status_code = 403
    error_code = "ACCESS_DENIED"


class ProvisioningFailure(EngineError):
    """External provisioning agent did not accept the signal"""
    status_code = 502
    error_code = "PROVISIONING_FAILED"
