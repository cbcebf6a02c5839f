"""Telephony service: outbound SMS via Twilio."""

import logging
import threading

from textdesk.services.telephony.base import BaseSmsProvider
from textdesk.services.telephony.exceptions import (
    TelephonyConfigurationError,
    TelephonyError,
    TelephonyProviderError,
)
from textdesk.services.telephony.models import (
    InboundSmsPayload,
    MessageStatusResponse,
    SmsResult,
    StatusCallbackPayload,
)
from textdesk.services.telephony.twilio import TwilioProvider, validate_webhook_signature

logger = logging.getLogger(__name__)

__all__ = [
    "BaseSmsProvider",
    "InboundSmsPayload",
    "MessageStatusResponse",
    "SmsResult",
    "StatusCallbackPayload",
    "TelephonyConfigurationError",
    "TelephonyError",
    "TelephonyProviderError",
    "TwilioProvider",
    "get_twilio_provider",
    "validate_webhook_signature",
]

# Lazy-initialized Twilio provider (avoids import-time errors when creds missing)
_twilio_provider: TwilioProvider | None = None
_twilio_lock = threading.Lock()


def get_twilio_provider() -> TwilioProvider:
    """Get or create the Twilio provider singleton.

    Raises TelephonyConfigurationError if credentials are not configured.
    """
    global _twilio_provider  # noqa: PLW0603
    if _twilio_provider is not None:
        return _twilio_provider

    with _twilio_lock:
        # Double-check after acquiring lock
        if _twilio_provider is not None:
            return _twilio_provider

        from textdesk.core.config import settings

        if not settings.TWILIO_ACCOUNT_SID:
            raise TelephonyConfigurationError(
                "Twilio credentials not configured. "
                "Set TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN (or an API key pair)."
            )

        _twilio_provider = TwilioProvider(
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            default_from_number=settings.TWILIO_PHONE_NUMBER,
            messaging_service_sid=settings.TWILIO_MESSAGING_SERVICE_SID,
            api_key_sid=settings.TWILIO_API_KEY_SID,
            api_key_secret=settings.TWILIO_API_KEY_SECRET,
        )
        logger.info("Twilio provider initialized")
        return _twilio_provider
