"""SMS service exceptions."""


class SmsServiceError(Exception):
    """Base exception for SMS service operations."""


class ValidationError(SmsServiceError):
    """Raised when input is rejected before any side effect (bad phone, blank template, oversized batch)."""


class ComplianceError(SmsServiceError):
    """Raised when consent or opt-out rules block a messaging action."""


class NotFoundError(SmsServiceError):
    """Raised when a referenced record does not exist."""


class DuplicateError(SmsServiceError):
    """Raised when a uniqueness rule would be violated."""


class CustomerNotFoundError(NotFoundError, ComplianceError):
    """Raised when a phone number has no customer profile where one is required.

    Both a lookup failure and a compliance failure: messaging a number
    outside the customer directory is never allowed.
    """
