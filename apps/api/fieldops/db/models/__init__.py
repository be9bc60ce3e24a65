"""SQLAlchemy ORM models."""

from fieldops.db.models.appointments import Appointment, AppointmentHold
from fieldops.db.models.audit import AuditLog
from fieldops.db.models.contacts import Contact
from fieldops.db.models.conversations import (
    ConversationMessage,
    ConversationParticipant,
    ConversationThread,
)
from fieldops.db.models.jobs import Job
from fieldops.db.models.policies import PolicySetting

__all__ = [
    "Appointment",
    "AppointmentHold",
    "AuditLog",
    "Contact",
    "ConversationMessage",
    "ConversationParticipant",
    "ConversationThread",
    "Job",
    "PolicySetting",
]
