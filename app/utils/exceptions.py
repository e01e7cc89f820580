from typing import Any, Optional


class AppException(Exception):
    """Base exception for all application-specific errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Any] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class NotFoundException(AppException):
    """Exception raised when a resource is not found."""

    def __init__(
        self,
        message: str = "Resource not found",
        details: Optional[Any] = None,
        code: str = "NOT_FOUND",
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=404,
            details=details,
        )


class PlanNotFoundException(NotFoundException):
    def __init__(self, message: str = "Plan not found or inactive", details: Optional[Any] = None):
        super().__init__(message=message, details=details, code="PLAN_NOT_FOUND")


class SubscriptionNotFoundException(NotFoundException):
    def __init__(self, message: str = "Subscription not found", details: Optional[Any] = None):
        super().__init__(message=message, details=details, code="SUBSCRIPTION_NOT_FOUND")


class PaymentNotFoundException(NotFoundException):
    def __init__(self, message: str = "Payment not found", details: Optional[Any] = None):
        super().__init__(message=message, details=details, code="PAYMENT_NOT_FOUND")


class ValidationException(AppException):
    """Exception raised when validation fails."""

    def __init__(
        self,
        message: str = "Validation failed",
        details: Optional[Any] = None,
        code: str = "VALIDATION_ERROR",
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=400,
            details=details,
        )


class InvalidAmountException(ValidationException):
    """Exception raised for a charge or refund amount that is out of bounds."""

    def __init__(self, message: str = "Invalid amount", details: Optional[Any] = None):
        super().__init__(message=message, details=details, code="INVALID_AMOUNT")


class MissingPaymentMethodException(ValidationException):
    def __init__(self, message: str = "Payment method is required", details: Optional[Any] = None):
        super().__init__(message=message, details=details, code="MISSING_PAYMENT_METHOD")


class WebhookRejectedException(ValidationException):
    """Exception raised when an inbound gateway webhook is refused."""

    def __init__(self, code: str, message: str, details: Optional[Any] = None):
        super().__init__(message=message, details=details, code=code)


class ForbiddenException(AppException):
    """Exception raised when an authenticated actor may not act on a resource."""

    def __init__(self, message: str = "Access denied", details: Optional[Any] = None):
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
            details=details,
        )


class ConflictException(AppException):
    """Exception raised when a business rule would be violated."""

    def __init__(
        self,
        message: str = "Conflict",
        details: Optional[Any] = None,
        code: str = "CONFLICT",
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class InvalidStateException(AppException):
    """Exception raised when an operation is not legal for the entity's current status."""

    def __init__(
        self,
        message: str = "Operation not allowed in the current state",
        details: Optional[Any] = None,
        code: str = "INVALID_STATE",
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class GatewayDeclinedException(AppException):
    """Exception raised when the payment processor rejects an operation."""

    def __init__(self, message: str = "Payment declined", details: Optional[Any] = None):
        super().__init__(
            code="GATEWAY_DECLINED",
            message=message,
            status_code=402,
            details=details,
        )


class GatewayUnavailableException(AppException):
    """Exception raised when the payment processor times out or cannot be reached."""

    def __init__(
        self, message: str = "Payment gateway unavailable", details: Optional[Any] = None
    ):
        super().__init__(
            code="GATEWAY_UNAVAILABLE",
            message=message,
            status_code=503,
            details=details,
        )


class DatabaseException(AppException):
    """Exception raised for database-related errors."""

    def __init__(
        self, message: str = "Database error occurred", details: Optional[Any] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=message,
            status_code=500,
            details=details,
        )


class UnauthorizedException(AppException):
    """Exception raised when authentication or authorization fails."""

    def __init__(
        self,
        message: str = "Unauthorized access",
        details: Optional[Any] = None,
        code: str = "UNAUTHORIZED",
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=401,
            details=details,
        )


class TokenRevokedException(UnauthorizedException):
    def __init__(self, message: str = "token revoked", details: Optional[Any] = None):
        super().__init__(message=message, details=details, code="TOKEN_REVOKED")


class InvalidTokenException(AppException):
    """Exception raised for a token with a bad signature, shape or type."""

    def __init__(
        self,
        message: str = "invalid token",
        details: Optional[Any] = None,
        code: str = "INVALID_TOKEN",
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=403,
            details=details,
        )


class TokenExpiredException(InvalidTokenException):
    def __init__(self, message: str = "invalid token", details: Optional[Any] = None):
        super().__init__(message=message, details=details, code="TOKEN_EXPIRED")
