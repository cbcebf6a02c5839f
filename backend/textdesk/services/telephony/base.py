"""Abstract SMS provider interface."""

from abc import ABC, abstractmethod

from textdesk.services.telephony.models import MessageStatusResponse, SmsResult


class BaseSmsProvider(ABC):
    """Abstract base class for SMS carrier providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier string."""

    @property
    def default_from_number(self) -> str:
        """Sender number used when none is given; empty if the provider sends via a service."""
        return ""

    @abstractmethod
    async def send_sms(
        self,
        to: str,
        body: str,
        from_number: str | None = None,
        status_callback: str | None = None,
    ) -> SmsResult:
        """Send a single outbound SMS.

        Args:
            to: Destination phone number (E.164).
            body: Message text.
            from_number: Sender (E.164). Falls back to the provider's
                messaging service or default number.
            status_callback: URL for delivery status webhooks.

        Returns:
            SmsResult with the carrier message ID and initial status.

        Raises:
            TelephonyProviderError: carrier rejection or transport failure.
        """

    @abstractmethod
    async def fetch_message(self, message_id: str) -> MessageStatusResponse:
        """Fetch the current delivery status of a sent message.

        Args:
            message_id: Provider-specific message identifier (Twilio SID).
        """
