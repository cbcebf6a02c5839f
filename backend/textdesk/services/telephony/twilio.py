"""Twilio SMS provider implementation."""

import asyncio
import logging
from functools import partial

from twilio.base.exceptions import TwilioRestException
from twilio.request_validator import RequestValidator
from twilio.rest import Client

from textdesk.services.telephony.base import BaseSmsProvider
from textdesk.services.telephony.exceptions import (
    TelephonyConfigurationError,
    TelephonyProviderError,
)
from textdesk.services.telephony.models import MessageStatusResponse, SmsResult

logger = logging.getLogger(__name__)


class TwilioProvider(BaseSmsProvider):
    """Twilio Programmable Messaging provider.

    The SDK issues form-encoded POSTs with Basic auth. When an API key pair
    is supplied it is used as the credential, otherwise the account SID and
    auth token are. Messages go out through the messaging service when one
    is configured, else from the default number.
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str = "",
        default_from_number: str = "",
        messaging_service_sid: str = "",
        api_key_sid: str = "",
        api_key_secret: str = "",
    ) -> None:
        if not account_sid:
            raise TelephonyConfigurationError("TWILIO_ACCOUNT_SID is required")
        if not auth_token and not (api_key_sid and api_key_secret):
            raise TelephonyConfigurationError(
                "TWILIO_AUTH_TOKEN or TWILIO_API_KEY_SID/TWILIO_API_KEY_SECRET are required"
            )
        if not messaging_service_sid and not default_from_number:
            raise TelephonyConfigurationError(
                "TWILIO_MESSAGING_SERVICE_SID or TWILIO_PHONE_NUMBER is required"
            )

        self._account_sid = account_sid
        self._default_from_number = default_from_number
        self._messaging_service_sid = messaging_service_sid

        if api_key_sid and api_key_secret:
            self._client = Client(api_key_sid, api_key_secret, account_sid)
        else:
            self._client = Client(account_sid, auth_token)

    @property
    def name(self) -> str:
        return "twilio"

    @property
    def default_from_number(self) -> str:
        return self._default_from_number

    async def send_sms(
        self,
        to: str,
        body: str,
        from_number: str | None = None,
        status_callback: str | None = None,
    ) -> SmsResult:
        """Send an SMS via the Twilio Messages API."""
        params: dict[str, str] = {"to": to, "body": body}
        if from_number:
            params["from_"] = from_number
        elif self._messaging_service_sid:
            params["messaging_service_sid"] = self._messaging_service_sid
        else:
            params["from_"] = self._default_from_number
        if status_callback:
            params["status_callback"] = status_callback

        loop = asyncio.get_running_loop()
        try:
            message = await loop.run_in_executor(
                None,
                partial(self._client.messages.create, **params),
            )
        except TwilioRestException as exc:
            raise TelephonyProviderError(
                "twilio",
                exc.msg or "Twilio API error",
                code=str(exc.code) if exc.code is not None else None,
            ) from exc
        except Exception as exc:
            raise TelephonyProviderError("twilio", f"Failed to send SMS: {exc}") from exc

        logger.info(
            "Twilio SMS accepted: sid=%s to=%s status=%s",
            message.sid,
            to,
            message.status,
        )
        return SmsResult(
            message_id=message.sid,
            status=message.status,
            from_number=message.from_,
            to_number=message.to,
        )

    async def fetch_message(self, message_id: str) -> MessageStatusResponse:
        """Fetch message details from Twilio."""
        loop = asyncio.get_running_loop()
        try:
            message = await loop.run_in_executor(
                None,
                self._client.messages(message_id).fetch,
            )
        except TwilioRestException as exc:
            raise TelephonyProviderError(
                "twilio",
                exc.msg or f"Failed to fetch message {message_id}",
                code=str(exc.code) if exc.code is not None else None,
            ) from exc
        except Exception as exc:
            raise TelephonyProviderError(
                "twilio", f"Failed to fetch message {message_id}: {exc}"
            ) from exc

        return MessageStatusResponse(
            message_id=message.sid,
            status=message.status,
            error_code=str(message.error_code) if message.error_code is not None else None,
            error_message=message.error_message,
            date_sent=message.date_sent,
            date_updated=message.date_updated,
        )


def validate_webhook_signature(auth_token: str, url: str, params: dict, signature: str) -> bool:
    """Check an ``X-Twilio-Signature`` header against the request URL and form params."""
    if not auth_token or not signature:
        return False
    return RequestValidator(auth_token).validate(url, params, signature)
