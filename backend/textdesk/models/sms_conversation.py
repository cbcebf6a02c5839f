import uuid
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from textdesk.core.database import Base


class SmsConversation(Base):
    """One 1:1 SMS thread per customer phone number.

    Created lazily on the first inbound or outbound message. ``unread_count``
    grows with inbound messages and is reset when staff open the thread.
    Archiving is a status change; messages are never deleted.
    """

    __tablename__ = "sms_conversations"
    __table_args__ = (
        Index("ix_sms_conversations_customer_id", "customer_id"),
        Index("ix_sms_conversations_status", "status"),
        Index("ix_sms_conversations_last_message_at", "last_message_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    customer_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("profiles.id"))
    status: Mapped[str] = mapped_column(
        Enum("active", "archived", name="sms_conversation_status"),
        nullable=False,
        default="active",
        server_default="active",
    )
    unread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_message_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())

    customer: Mapped["Profile"] = relationship()
    messages: Mapped[list["SmsMessage"]] = relationship(back_populates="conversation", order_by="SmsMessage.sent_at")

    def __repr__(self) -> str:
        return f"<SmsConversation {self.customer_phone} status={self.status} unread={self.unread_count}>"
