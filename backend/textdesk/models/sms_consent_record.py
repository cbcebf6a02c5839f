import uuid
from datetime import datetime

from sqlalchemy import Boolean, Index, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from textdesk.core.database import Base


class SmsConsentRecord(Base):
    """Web opt-in submitted by someone who has no customer profile yet."""

    __tablename__ = "sms_consent_records"
    __table_args__ = (Index("ix_sms_consent_records_phone_number", "phone_number"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str | None] = mapped_column(String(255))
    consent_given: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")
    consent_method: Mapped[str] = mapped_column(String(50), nullable=False)
    consent_date: Mapped[datetime] = mapped_column(server_default=func.now())

    def __repr__(self) -> str:
        return f"<SmsConsentRecord {self.phone_number} given={self.consent_given}>"
