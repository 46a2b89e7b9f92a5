from fastapi import HTTPException, status


class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "Not authorized to access this route"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ValidationError(HTTPException):
    """Malformed or missing input, including malformed availability templates."""

    def __init__(self, detail: str = "Validation failed"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NotFoundError(HTTPException):
    """The referenced row is absent or belongs to another tenant."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class AuthorizationError(HTTPException):
    def __init__(self, detail: str = "Not enough permissions"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class ConflictError(HTTPException):
    """Overlapping booking. Reported as 400 to match the public API contract."""

    def __init__(self, detail: str = "Doctor is not available at the selected time"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class InvalidStateError(ConflictError):
    """Status transition not permitted from the appointment's current state."""

    def __init__(self, detail: str = "Appointment cannot change status from its current state"):
        super().__init__(detail=detail)


class TransientError(HTTPException):
    """Lock timeout, deadlock or serialization failure. Safe to retry."""

    retryable = True

    def __init__(self, detail: str = "The doctor's schedule is busy, please retry"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            headers={"Retry-After": "1"},
        )


class TenantIsolationError(RuntimeError):
    """Raised when code tries to touch a row outside the active tenant.

    This is a programming error, never a client error, so it is not an
    HTTPException and ends up as a 500.
    """
