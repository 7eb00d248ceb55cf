# src/errors.py
from fastapi import HTTPException, status


class ValidationError(HTTPException):
    """Bad or missing input, unknown plan, invalid action."""
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class SignatureError(HTTPException):
    """Gateway signature did not verify."""
    def __init__(self, detail: str = "Payment verification failed"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NotFoundError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ConflictError(HTTPException):
    """Business rule refused the operation."""
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class PersistenceError(HTTPException):
    def __init__(self, detail: str = "Internal server error"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


class GatewayError(HTTPException):
    """Payment gateway call failed."""
    def __init__(self, detail: str = "Failed to create Razorpay order"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


class ConfigurationError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
