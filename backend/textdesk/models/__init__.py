from textdesk.models.authorized_phone_number import AuthorizedPhoneNumber
from textdesk.models.profile import Profile
from textdesk.models.sms_consent_record import SmsConsentRecord
from textdesk.models.sms_conversation import SmsConversation
from textdesk.models.sms_message import SmsMessage
from textdesk.models.sms_message_audit import SmsMessageAudit
from textdesk.models.sms_opt_out import SmsOptOut

__all__ = [
    "AuthorizedPhoneNumber",
    "Profile",
    "SmsConsentRecord",
    "SmsConversation",
    "SmsMessage",
    "SmsMessageAudit",
    "SmsOptOut",
]
