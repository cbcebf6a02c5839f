import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from textdesk.core.database import Base


class AuthorizedPhoneNumber(Base):
    """Admin allow-list entry for 1:1 conversational messaging.

    Compliance is verified when the row is created. Rows are soft-deleted
    via ``is_active`` so the history of who was ever authorized survives.
    """

    __tablename__ = "authorized_phone_numbers"
    __table_args__ = (
        Index(
            "uq_authorized_phone_numbers_active_phone",
            "phone_number",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    compliance_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    verification_date: Mapped[datetime | None] = mapped_column()
    verification_notes: Mapped[str | None] = mapped_column(Text)
    added_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("profiles.id"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())

    def __repr__(self) -> str:
        state = "active" if self.is_active else "revoked"
        return f"<AuthorizedPhoneNumber {self.phone_number} ({state})>"
