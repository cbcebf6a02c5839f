import uuid
from datetime import datetime

from sqlalchemy import String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from textdesk.core.database import Base


class SmsOptOut(Base):
    """Opt-out ledger: one row per phone number currently opted out.

    Presence here blocks non-transactional messages regardless of the
    profile's ``sms_consent`` flag. Deleted when the number texts START.
    """

    __tablename__ = "sms_opt_outs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    method: Mapped[str] = mapped_column(String(50), nullable=False, server_default="STOP keyword")
    notes: Mapped[str | None] = mapped_column(Text)
    opted_out_at: Mapped[datetime] = mapped_column(server_default=func.now())

    def __repr__(self) -> str:
        return f"<SmsOptOut {self.phone_number} method={self.method}>"
