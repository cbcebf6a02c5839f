import uuid
from datetime import datetime

from sqlalchemy import Boolean, Enum, Index, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from textdesk.core.database import Base


class Profile(Base):
    """Customer directory row owned by the storefront.

    The SMS subsystem reads identity and role from it and writes only the
    ``sms_consent*`` fields.
    """

    __tablename__ = "profiles"
    __table_args__ = (
        Index("ix_profiles_phone", "phone"),
        Index("ix_profiles_sms_consent", "sms_consent"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(20))
    role: Mapped[str] = mapped_column(
        Enum("customer", "admin", name="profile_role"),
        nullable=False,
        default="customer",
        server_default="customer",
    )
    sms_consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    sms_consent_method: Mapped[str | None] = mapped_column(String(50))
    sms_consent_date: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self) -> str:
        return f"<Profile {self.id} phone={self.phone}>"
