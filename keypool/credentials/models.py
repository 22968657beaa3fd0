import enum
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from keypool.db.base import Base, TimestampMixin, UUIDMixin


class CircuitState(str, enum.Enum):
    CLOSED = "CLOSED"        # Eligible for normal selection
    OPEN = "OPEN"            # Excluded until the cool-down elapses
    HALF_OPEN = "HALF_OPEN"  # One trial in flight


class FailureReason(str, enum.Enum):
    RATE_LIMITED = "RATE_LIMITED"
    AUTH_REJECTED = "AUTH_REJECTED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


class Credential(UUIDMixin, TimestampMixin, Base):
    """One pooled API key for an external service. Fernet-encrypted at rest."""
    __tablename__ = "credentials"
    __table_args__ = (
        Index("ix_credentials_service_active", "service_name", "is_active"),
        CheckConstraint("usage_count >= 0", name="ck_credentials_usage_nonnegative"),
    )

    service_name: Mapped[str] = mapped_column(String(64), nullable=False)
    key_name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Fernet-encrypted API key (base64url encoded ciphertext)
    encrypted_secret: Mapped[str] = mapped_column(Text, nullable=False)

    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    circuit_state: Mapped[CircuitState] = mapped_column(
        Enum(CircuitState), nullable=False, default=CircuitState.CLOSED
    )
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cooldown_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    last_failure_reason: Mapped[FailureReason | None] = mapped_column(
        Enum(FailureReason), nullable=True
    )

    last_failure_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_tested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Only keys parked with auto_recover=True come back via recover_inactive
    auto_recover: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
