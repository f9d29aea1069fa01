"""User model."""

from sqlalchemy import Boolean, Column, DateTime, Enum, String
from sqlalchemy.orm import relationship

from src.database import Base
from src.models.enums import AccountStatus
from src.models.mixins import TimestampMixin, UUIDPrimaryKeyMixin


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """User model for authentication and ownership of devices and syncs."""

    __tablename__ = "users"

    email = Column(String(255), unique=True, nullable=False, index=True)  # stored lowercase
    username = Column(String(50), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=False)

    email_verified = Column(Boolean, default=False, nullable=False)
    verification_token = Column(String(64), nullable=True, index=True)
    reset_password_token = Column(String(64), nullable=True, index=True)
    reset_token_expires = Column(DateTime(timezone=True), nullable=True)
    last_login = Column(DateTime(timezone=True), nullable=True)

    account_status = Column(
        Enum(
            AccountStatus,
            name="accountstatus",
            values_callable=lambda x: [e.value for e in x],
        ),
        default=AccountStatus.ACTIVE,
        nullable=False,
    )

    # Relationships
    devices = relationship("Device", back_populates="user", cascade="all, delete-orphan")
    sync_records = relationship("SyncRecord", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        """Check if the account may authenticate."""
        return self.account_status == AccountStatus.ACTIVE
