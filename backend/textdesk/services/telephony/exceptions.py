"""Telephony service exceptions."""


class TelephonyError(Exception):
    """Base exception for telephony operations."""


class TelephonyProviderError(TelephonyError):
    """Raised when a telephony provider operation fails.

    ``code`` and ``error_message`` carry the carrier's own error details
    when it supplied them (e.g. Twilio error 21610 for an unsubscribed
    recipient).
    """

    def __init__(self, provider: str, message: str, code: str | None = None) -> None:
        self.provider = provider
        self.code = code
        self.error_message = message
        super().__init__(f"[{provider}] {message}")


class TelephonyConfigurationError(TelephonyError):
    """Raised when telephony configuration is missing or invalid."""
