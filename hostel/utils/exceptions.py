from fastapi import HTTPException, status


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES: machine-readable constants for frontend switch/case
# ═══════════════════════════════════════════════════════════════════════════════
class ErrorCode:
    VALIDATION_ERROR        = "VALIDATION_ERROR"
    NOT_FOUND               = "NOT_FOUND"
    CONFLICT                = "CONFLICT"
    CAPACITY_EXCEEDED       = "CAPACITY_EXCEEDED"
    ROOM_UNAVAILABLE        = "ROOM_UNAVAILABLE"
    INVALID_STATE           = "INVALID_STATE"
    INVALID_REFUND          = "INVALID_REFUND"
    INTERNAL_SERVER_ERROR   = "INTERNAL_SERVER_ERROR"


# ═══════════════════════════════════════════════════════════════════════════════
# BASE EXCEPTION
# ═══════════════════════════════════════════════════════════════════════════════
class AppException(HTTPException):
    """
    Base exception for all application-level errors.
    Carries a machine-readable error_code for frontend handling.
    """
    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: str,
        details: list | None = None,
        field: str | None = None,
    ):
        super().__init__(status_code=status_code, detail={
            "message": message,
            "error": {
                "code": error_code,
                "details": details,
                "field": field,
            }
        })
        self.message    = message
        self.error_code = error_code
        self.field      = field

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


# ═══════════════════════════════════════════════════════════════════════════════
# CONCRETE EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════════════

class ValidationException(AppException):
    def __init__(self, message: str = "Invalid input", field: str | None = None):
        super().__init__(status.HTTP_422_UNPROCESSABLE_ENTITY, message, ErrorCode.VALIDATION_ERROR, field=field)


class NotFoundException(AppException):
    def __init__(self, resource: str = "Resource"):
        super().__init__(status.HTTP_404_NOT_FOUND, f"{resource} not found", ErrorCode.NOT_FOUND)


class ConflictException(AppException):
    def __init__(self, message: str = "Record already exists", field: str | None = None):
        super().__init__(status.HTTP_409_CONFLICT, message, ErrorCode.CONFLICT, field=field)


class CapacityExceededException(AppException):
    def __init__(
        self,
        message: str = "Room has no free slot",
        error_code: str = ErrorCode.CAPACITY_EXCEEDED,
    ):
        super().__init__(status.HTTP_409_CONFLICT, message, error_code)


class RoomUnavailableException(CapacityExceededException):
    """Room is retired or not in good repair; rejected like a full room."""
    def __init__(self, message: str = "Room is not available (inactive or under maintenance)"):
        super().__init__(message, ErrorCode.ROOM_UNAVAILABLE)


class InvalidStateException(AppException):
    def __init__(
        self,
        message: str = "Operation not allowed in the current state",
        error_code: str = ErrorCode.INVALID_STATE,
    ):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, error_code)


class InvalidRefundException(InvalidStateException):
    def __init__(self, amount, remaining):
        super().__init__(
            f"Refund of {amount} exceeds remaining deposit of {remaining}",
            ErrorCode.INVALID_REFUND,
        )
