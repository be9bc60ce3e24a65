"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fieldops.db.base import Base, utcnow
from fieldops.db.enums import DEFAULT_THREAD_STATE, DEFAULT_THREAD_STATUS
from fieldops.db.types import JSONType

if TYPE_CHECKING:
    from fieldops.db.models import Contact


class ConversationThread(Base):
    """
    One customer-facing conversation on one channel.

    contact_id may be null until the sender is matched to a contact.
    """

    __tablename__ = "conversation_threads"
    __table_args__ = (
        Index("idx_threads_contact", "contact_id", "last_message_at"),
        Index("idx_threads_channel_last", "channel", "last_message_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True
    )
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_THREAD_STATUS.value, nullable=False
    )
    state: Mapped[str] = mapped_column(String(40), default=DEFAULT_THREAD_STATE, nullable=False)
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)

    last_message_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_message_preview: Mapped[str | None] = mapped_column(String(140), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    contact: Mapped["Contact | None"] = relationship()
    participants: Mapped[list["ConversationParticipant"]] = relationship(
        back_populates="thread", cascade="all, delete-orphan"
    )


class ConversationParticipant(Base):
    """
    Sender/recipient on a thread.

    A team participant with a null team_member_id is the autopilot persona;
    a non-null team_member_id is a human.
    """

    __tablename__ = "conversation_participants"
    __table_args__ = (Index("idx_participants_thread", "thread_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversation_threads.id", ondelete="CASCADE"), nullable=False
    )
    participant_type: Mapped[str] = mapped_column(String(20), nullable=False)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True
    )
    team_member_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    external_address: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    thread: Mapped["ConversationThread"] = relationship(back_populates="participants")


class ConversationMessage(Base):
    """
    One message within a thread.

    Drafts (is_draft=True) are never delivered; the release phase clears the
    flag on the same row. The only new row created at release is the SMS
    copy of a DM draft (autopilot_derived_from_draft_id set).
    """

    __tablename__ = "conversation_messages"
    __table_args__ = (
        Index("idx_messages_thread_created", "thread_id", "created_at"),
        Index("idx_messages_autopilot_for", "autopilot_for_message_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversation_threads.id", ondelete="CASCADE"), nullable=False
    )
    participant_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("conversation_participants.id", ondelete="SET NULL"), nullable=True
    )

    direction: Mapped[str] = mapped_column(String(10), nullable=False)  # inbound, outbound
    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    to_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    from_address: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Delivery
    delivery_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    provider: Mapped[str | None] = mapped_column(String(30), nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    failure_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Draft and autopilot provenance
    is_draft: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    autopilot: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    autopilot_for_message_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    autopilot_no_autosend: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    autopilot_derived_from_draft_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True
    )
    ai_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    missing_info: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    alternatives: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    extracted_phone_e164: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # DM routing (page the customer wrote to)
    dm_page_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    thread: Mapped["ConversationThread"] = relationship()
    participant: Mapped["ConversationParticipant | None"] = relationship()
