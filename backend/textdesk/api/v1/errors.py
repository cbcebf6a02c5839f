"""Translation of service-layer exceptions into HTTP errors."""

from fastapi import HTTPException

from textdesk.services.errors import (
    ComplianceError,
    DuplicateError,
    NotFoundError,
    SmsServiceError,
    ValidationError,
)
from textdesk.services.telephony.exceptions import (
    TelephonyConfigurationError,
    TelephonyError,
    TelephonyProviderError,
)


def to_http_error(exc: Exception, compliance_status: int = 422) -> HTTPException:
    """Map a service or carrier exception to the HTTPException to raise.

    A CustomerNotFoundError is reported as a compliance failure, not a 404.
    """
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError) and not isinstance(exc, ComplianceError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ComplianceError):
        return HTTPException(status_code=compliance_status, detail=str(exc))
    if isinstance(exc, DuplicateError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, TelephonyConfigurationError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, TelephonyProviderError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, (SmsServiceError, TelephonyError)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal server error")
