# backend/utils/errors.py
from fastapi import HTTPException, status


# Base class for domain errors; rendered as {"detail": ..., "error": ...} by main.py
class AppError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "AppError"

    def __init__(self, detail: str):
        super().__init__(status_code=type(self).status_code, detail=detail)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "ValidationError"


class EmptyCart(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "EmptyCart"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "NotFound"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"


class InsufficientStock(AppError):
    status_code = status.HTTP_409_CONFLICT
    error = "InsufficientStock"


class DeliveryUnavailable(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "DeliveryUnavailable"


class MinimumOrderNotMet(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "MinimumOrderNotMet"


class InvalidState(AppError):
    status_code = status.HTTP_409_CONFLICT
    error = "InvalidState"


class ExternalServiceError(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    error = "ExternalServiceError"


class SignatureVerificationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "SignatureVerificationError"


class PaymentMismatch(AppError):
    status_code = status.HTTP_409_CONFLICT
    error = "PaymentMismatch"
