"""Telephony message models."""

from datetime import datetime

from pydantic import BaseModel


class SmsResult(BaseModel):
    """Result of sending an SMS message via a telephony provider."""

    message_id: str
    status: str
    from_number: str | None = None
    to_number: str | None = None


class MessageStatusResponse(BaseModel):
    """Current carrier-side state of a previously sent message."""

    message_id: str
    status: str
    error_code: str | None = None
    error_message: str | None = None
    date_sent: datetime | None = None
    date_updated: datetime | None = None


class InboundSmsPayload(BaseModel):
    """Twilio inbound SMS webhook payload.

    Field names match Twilio's POST parameter names exactly. Media fields
    are accepted but unused.
    """

    MessageSid: str = ""
    From: str = ""
    To: str = ""
    Body: str = ""
    SmsStatus: str | None = None
    NumMedia: str | None = None


class StatusCallbackPayload(BaseModel):
    """Twilio message status callback payload."""

    MessageSid: str = ""
    MessageStatus: str = ""
    ErrorCode: str | None = None
    ErrorMessage: str | None = None
