"""SQLAlchemy database models."""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Call(Base):
    """One outbound call request and its lifecycle record."""

    __tablename__ = "calls"
    __table_args__ = (
        Index("ix_calls_account_created", "account_id", "created_at"),
        Index("ix_calls_to_number_status", "to_number", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid, index=True)

    # Owning principal
    account_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    api_key_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    from_number: Mapped[str] = mapped_column(String(20), nullable=False)
    to_number: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(String(32), index=True, nullable=False, default="queued")

    # Set once when the provider accepts the dispatch
    provider_call_id: Mapped[Optional[str]] = mapped_column(
        String(64), unique=True, index=True, nullable=True
    )

    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    batch_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)

    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    call_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    recording: Mapped[Optional["Recording"]] = relationship(
        "Recording", back_populates="call", uselist=False, lazy="noload"
    )

    def __repr__(self) -> str:
        return f"<Call(id={self.id}, status={self.status}, provider_call_id={self.provider_call_id})>"


class Recording(Base):
    """The primary recording of a call, plus its transcription."""

    __tablename__ = "recordings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid, index=True)
    call_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("calls.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    provider_recording_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    recording_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    filename: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    size_bytes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # pending -> downloaded | failed
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # pending -> completed | failed
    transcription_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    transcription_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transcription_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )
    downloaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    call: Mapped["Call"] = relationship("Call", back_populates="recording", lazy="noload")

    def __repr__(self) -> str:
        return f"<Recording(id={self.id}, call_id={self.call_id}, status={self.status})>"


class CallEvent(Base):
    """Append-only audit log entry for a call."""

    __tablename__ = "call_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    call_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("calls.id", ondelete="CASCADE"), index=True, nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        return f"<CallEvent(id={self.id}, call_id={self.call_id}, type={self.event_type})>"


class AccountQuota(Base):
    """Per-account call counters for the current day and month."""

    __tablename__ = "account_quotas"

    account_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # None means the configured default applies
    daily_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    monthly_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    daily_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    monthly_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    day_window: Mapped[str] = mapped_column(String(10), nullable=False)
    month_window: Mapped[str] = mapped_column(String(7), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<AccountQuota(account_id={self.account_id}, "
            f"daily={self.daily_count}, monthly={self.monthly_count})>"
        )


class ApiKey(Base):
    """Client API key. Only the SHA-256 hash of the key is stored."""

    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid, index=True)
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    key_prefix: Mapped[str] = mapped_column(String(16), nullable=False)
    account_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ApiKey(id={self.id}, account_id={self.account_id}, prefix={self.key_prefix})>"
