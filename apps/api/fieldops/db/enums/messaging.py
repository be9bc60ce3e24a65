"""Conversation/messaging enums."""

from enum import Enum


class Channel(str, Enum):
    """Customer-facing conversation channels."""

    SMS = "sms"
    EMAIL = "email"
    DM = "dm"  # Page direct messages (Messenger-style)
    WEB = "web"  # Site chat widget; stored but never auto-answered


# Channels the autopilot drafts replies for
REPLY_CHANNELS: frozenset[str] = frozenset(
    {Channel.SMS.value, Channel.EMAIL.value, Channel.DM.value}
)


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class DeliveryStatus(str, Enum):
    """Outbound delivery lifecycle."""

    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


class ParticipantType(str, Enum):
    CONTACT = "contact"
    TEAM = "team"  # Team member, or the autopilot persona when team_member_id is null


class ThreadStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
