import uuid
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from textdesk.core.database import Base

MESSAGE_STATUSES = ("queued", "sent", "delivered", "failed", "undelivered", "received")

# Once a message reaches one of these, its status never changes again
TERMINAL_STATUSES = frozenset({"delivered", "failed", "undelivered", "received"})


class SmsMessage(Base):
    """Individual SMS message: either inbound (received) or outbound (sent).

    Linked to a conversation for threading. Tracks the Twilio message SID
    and delivery status via status callbacks and polling.
    """

    __tablename__ = "sms_messages"
    __table_args__ = (
        Index("ix_sms_messages_conversation_id", "conversation_id"),
        Index("ix_sms_messages_twilio_sid", "twilio_sid"),
        Index("ix_sms_messages_direction", "direction"),
        Index("ix_sms_messages_sent_at", "sent_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("sms_conversations.id"), nullable=False
    )
    direction: Mapped[str] = mapped_column(
        Enum("inbound", "outbound", name="sms_direction"),
        nullable=False,
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    from_number: Mapped[str] = mapped_column(String(20), nullable=False)
    to_number: Mapped[str] = mapped_column(String(20), nullable=False)
    twilio_sid: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(
        Enum(*MESSAGE_STATUSES, name="sms_message_status"),
        nullable=False,
        default="queued",
        server_default="queued",
    )
    error_code: Mapped[str | None] = mapped_column(String(20))
    error_message: Mapped[str | None] = mapped_column(Text)
    sent_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("profiles.id"))
    sent_at: Mapped[datetime] = mapped_column(server_default=func.now())
    status_checked_at: Mapped[datetime | None] = mapped_column()
    status_check_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    conversation: Mapped["SmsConversation"] = relationship(back_populates="messages")
    sender: Mapped["Profile"] = relationship()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<SmsMessage {self.direction} status={self.status}>"
