"""Error taxonomy shared by services and rendered by ``server.api.error_handlers``."""

from typing import Any, Dict, Optional


class AppError(Exception):
    status_code = 500
    code = "ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.extra: Dict[str, Any] = extra


class BadRequestError(AppError):
    status_code = 400
    code = "BAD_REQUEST"


class SignatureMismatchError(BadRequestError):
    code = "INVALID_SIGNATURE"


class WebhookSignatureError(BadRequestError):
    code = "INVALID_WEBHOOK_SIGNATURE"


class UnauthorizedError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class AlreadyEnrolledError(ConflictError):
    # Clients of create-order expect a plain 400 here
    status_code = 400
    code = "ALREADY_ENROLLED"


class InternalError(AppError):
    status_code = 500
    code = "INTERNAL_ERROR"


class GatewayError(InternalError):
    status_code = 502
    code = "GATEWAY_ERROR"


class GatewayProviderError(GatewayError):
    """The gateway answered with an error body (bad request, auth, ...)."""

    code = "GATEWAY_PROVIDER_ERROR"

    def __init__(self, message: str, *, provider_code: Optional[str] = None, http_status: Optional[int] = None):
        super().__init__(message)
        self.provider_code = provider_code
        self.http_status = http_status


class GatewayTransportError(GatewayError):
    """The gateway could not be reached or returned something unreadable."""

    code = "GATEWAY_UNAVAILABLE"
