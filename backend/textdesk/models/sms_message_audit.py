import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from textdesk.core.database import Base


class SmsMessageAudit(Base):
    """Compliance record of one batch campaign outcome for one recipient.

    Every recipient of a batch gets exactly one row, including skipped ones
    (``twilio_status='skipped'`` with the reason in ``error_message``). Rows
    are append-only; only status reconciliation touches them afterwards.
    """

    __tablename__ = "sms_message_audit"
    __table_args__ = (
        Index("ix_sms_message_audit_batch_id", "batch_id"),
        Index("ix_sms_message_audit_user_id", "user_id"),
        Index("ix_sms_message_audit_twilio_sid", "twilio_sid"),
        Index("ix_sms_message_audit_sent_at", "sent_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("profiles.id"))
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    message_body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    template_used: Mapped[str | None] = mapped_column(Text)
    twilio_sid: Mapped[str | None] = mapped_column(String(50))
    twilio_status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(20))
    error_message: Mapped[str | None] = mapped_column(Text)
    sent_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("profiles.id"))
    batch_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    sent_at: Mapped[datetime] = mapped_column(server_default=func.now())
    status_checked_at: Mapped[datetime | None] = mapped_column()
    status_check_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    user: Mapped["Profile"] = relationship(foreign_keys=[user_id])
    sender: Mapped["Profile"] = relationship(foreign_keys=[sent_by])

    def __repr__(self) -> str:
        return f"<SmsMessageAudit batch={self.batch_id} status={self.twilio_status}>"
