"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite schema per test (services commit freely)
- Factories for contacts, threads and messages
- A stub draft composer and a recording transport
- HTTPX AsyncClient against the API with get_db overridden
"""
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncGenerator, Generator

# Settings are read at import; pin them before any fieldops import
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["OPENAI_API_KEY"] = ""
os.environ["TRANSPORT_DRY_RUN"] = "False"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from fieldops.core.deps import get_db
from fieldops.db.base import Base
from fieldops.db.enums import (
    Channel,
    DeliveryStatus,
    MessageDirection,
    ParticipantType,
)
from fieldops.db.models import (
    Contact,
    ConversationMessage,
    ConversationParticipant,
    ConversationThread,
)
from fieldops.db.session import SessionLocal, engine
from fieldops.main import app
from fieldops.services.autopilot_text import ReplyCandidate
from fieldops.services.draft_composer import DraftContext, DraftResult
from fieldops.services.transport_service import (
    OutboundMessage,
    SendResult,
    Transport,
    TransportError,
)

# Monday 2026-03-02 09:00 America/New_York
NOW = datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)


# =============================================================================
# Database
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Session on a freshly created schema.

    Service code commits its own units of work, so isolation comes from
    recreating the schema rather than from an outer rollback.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def internal_headers() -> dict:
    return {"X-Internal-Secret": "test-internal-secret"}


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_contact(db: Session):
    def _make(**overrides) -> Contact:
        values = {
            "first_name": "Jamie",
            "last_name": "Rivera",
            "phone": "(404) 555-0134",
            "phone_e164": "+14045550134",
            "email": f"jamie-{uuid.uuid4().hex[:6]}@example.com",
            "postal_code": "30188",
        }
        values.update(overrides)
        contact = Contact(**values)
        db.add(contact)
        db.commit()
        db.refresh(contact)
        return contact

    return _make


@pytest.fixture
def make_thread(db: Session):
    def _make(contact: Contact | None, channel: str = Channel.SMS.value, **overrides) -> ConversationThread:
        thread = ConversationThread(
            contact_id=contact.id if contact else None,
            channel=channel,
            **overrides,
        )
        db.add(thread)
        db.flush()
        if contact is not None:
            db.add(
                ConversationParticipant(
                    thread_id=thread.id,
                    participant_type=ParticipantType.CONTACT.value,
                    contact_id=contact.id,
                    display_name=contact.display_name,
                    external_address=contact.phone_e164,
                )
            )
        db.commit()
        db.refresh(thread)
        return thread

    return _make


@pytest.fixture
def add_inbound(db: Session):
    def _add(
        thread: ConversationThread,
        body: str,
        at: datetime,
        channel: str | None = None,
        from_address: str | None = None,
        dm_page_id: str | None = None,
    ) -> ConversationMessage:
        message = ConversationMessage(
            thread_id=thread.id,
            direction=MessageDirection.INBOUND.value,
            channel=channel or thread.channel,
            body=body,
            from_address=from_address or "+14045550134",
            delivery_status=DeliveryStatus.DELIVERED.value,
            dm_page_id=dm_page_id,
            created_at=at,
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        return message

    return _add


@pytest.fixture
def add_team_reply(db: Session):
    """Outbound message written by a human team member."""

    def _add(thread: ConversationThread, body: str, at: datetime) -> ConversationMessage:
        participant = ConversationParticipant(
            thread_id=thread.id,
            participant_type=ParticipantType.TEAM.value,
            team_member_id=uuid.uuid4(),
            display_name="Sam",
        )
        db.add(participant)
        db.flush()
        message = ConversationMessage(
            thread_id=thread.id,
            participant_id=participant.id,
            direction=MessageDirection.OUTBOUND.value,
            channel=thread.channel,
            body=body,
            to_address="+14045550134",
            delivery_status=DeliveryStatus.SENT.value,
            created_at=at,
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        return message

    return _add


# =============================================================================
# Fakes
# =============================================================================

class StubComposer:
    """Draft composer returning a fixed reply and recording what it was asked."""

    def __init__(self, body: str = "Happy to help! What items do you need hauled and what is your ZIP?"):
        self.body = body
        self.contexts: list[DraftContext] = []
        self.error: Exception | None = None

    async def compose(self, context: DraftContext) -> DraftResult:
        self.contexts.append(context)
        if self.error is not None:
            raise self.error
        subject = "Re: your pickup" if context.channel == Channel.EMAIL.value else ""
        return DraftResult(
            best=ReplyCandidate(body=self.body, subject=subject),
            model="stub-model",
            missing_info=["items", "timing"],
        )


@pytest.fixture
def stub_composer() -> StubComposer:
    return StubComposer()


@dataclass
class RecordingTransport(Transport):
    sent: list[OutboundMessage] = field(default_factory=list)
    error: TransportError | None = None

    async def send(self, message: OutboundMessage) -> SendResult:
        if self.error is not None:
            raise self.error
        self.sent.append(message)
        return SendResult(provider="recording", provider_message_id=f"rec-{len(self.sent)}")


@pytest.fixture
def recording_transport() -> RecordingTransport:
    return RecordingTransport()


# =============================================================================
# Client
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
