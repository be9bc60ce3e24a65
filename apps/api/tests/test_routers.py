"""HTTP surface: booking, scheduler ticks and the job store view."""

from datetime import datetime, timedelta, timezone
import uuid
from zoneinfo import ZoneInfo

import pytest
from httpx import AsyncClient

from fieldops.db.enums import HoldStatus, JobType
from fieldops.db.models import AppointmentHold
from fieldops.services import job_service


def _next_weekday_morning() -> datetime:
    """10:00 New York time on the next weekday, always in the future."""
    local = datetime.now(ZoneInfo("America/New_York")) + timedelta(days=1)
    while local.weekday() >= 5:
        local += timedelta(days=1)
    return local.replace(hour=10, minute=0, second=0, microsecond=0)


def _hold_body(start: datetime, minutes: int = 60, contact_id=None) -> dict:
    return {
        "contact_id": str(contact_id) if contact_id else None,
        "start_at": start.isoformat(),
        "duration_minutes": minutes,
    }


# =============================================================================
# Booking
# =============================================================================

@pytest.mark.asyncio
async def test_hold_confirm_and_full_slot(client: AsyncClient, make_contact):
    start = _next_weekday_morning()
    contact = make_contact()

    response = await client.post("/booking/holds", json=_hold_body(start, contact_id=contact.id))
    assert response.status_code == 201
    hold = response.json()
    assert hold["status"] == HoldStatus.ACTIVE.value
    assert hold["contact_id"] == str(contact.id)

    response = await client.post(f"/booking/holds/{hold['id']}/confirm")
    assert response.status_code == 201
    assert response.json()["hold_id"] == hold["id"]

    assert (await client.post("/booking/appointments", json=_hold_body(start))).status_code == 201
    response = await client.post("/booking/holds", json=_hold_body(start + timedelta(minutes=30)))
    assert response.status_code == 409
    assert response.json() == {"detail": {"code": "slot_full"}}


@pytest.mark.asyncio
async def test_confirm_unknown_hold_is_404(client: AsyncClient):
    response = await client.post(f"/booking/holds/{uuid.uuid4()}/confirm")
    assert response.status_code == 404
    assert response.json() == {"detail": {"code": "hold_not_found"}}


@pytest.mark.asyncio
async def test_release_hold(client: AsyncClient):
    response = await client.post("/booking/holds", json=_hold_body(_next_weekday_morning()))
    hold_id = response.json()["id"]

    assert (await client.delete(f"/booking/holds/{hold_id}")).status_code == 204
    assert (await client.delete(f"/booking/holds/{hold_id}")).status_code == 404


@pytest.mark.asyncio
async def test_booking_outside_hours_is_rejected(client: AsyncClient):
    late = _next_weekday_morning().replace(hour=21)
    response = await client.post("/booking/appointments", json=_hold_body(late))
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "outside_business_hours"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"start_at": "2026-03-03T10:00:00", "duration_minutes": 60},
        {"start_at": "2026-03-03T10:00:00-05:00", "duration_minutes": 0},
        {"start_at": "2026-03-03T10:00:00-05:00", "duration_minutes": 721},
    ],
)
async def test_booking_request_validation(client: AsyncClient, body):
    response = await client.post("/booking/holds", json=body)
    assert response.status_code == 422


# =============================================================================
# Internal scheduler ticks
# =============================================================================

@pytest.mark.asyncio
async def test_internal_endpoints_require_secret(client: AsyncClient):
    response = await client.post(
        "/internal/scheduled/expire-holds", headers={"X-Internal-Secret": "wrong"}
    )
    assert response.status_code == 403

    response = await client.post("/internal/scheduled/outbox")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_outbox_tick_runs_one_batch(client: AsyncClient, db, internal_headers):
    job_service.enqueue_job(db, JobType.MESSAGE_SEND, {"message_id": uuid.uuid4()})

    response = await client.post("/internal/scheduled/outbox", headers=internal_headers)

    assert response.status_code == 200
    assert response.json() == {
        "claimed": 1,
        "processed": 0,
        "skipped": 1,
        "retried": 0,
        "failed": 0,
    }


@pytest.mark.asyncio
async def test_expire_holds_tick(client: AsyncClient, db, internal_headers):
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    db.add(
        AppointmentHold(
            start_at=past + timedelta(days=2),
            end_at=past + timedelta(days=2, hours=1),
            duration_minutes=60,
            status=HoldStatus.ACTIVE.value,
            expires_at=past,
        )
    )
    db.commit()

    response = await client.post("/internal/scheduled/expire-holds", headers=internal_headers)

    assert response.status_code == 200
    assert response.json() == {"expired": 1}


# =============================================================================
# Jobs
# =============================================================================

@pytest.mark.asyncio
async def test_list_and_get_jobs(client: AsyncClient, db, internal_headers):
    job = job_service.enqueue_job(db, JobType.MESSAGE_SEND, {"message_id": uuid.uuid4()})
    job_service.enqueue_job(
        db, JobType.AUTOPILOT_AUTOSEND, {"draft_message_id": uuid.uuid4()}
    )

    response = await client.get(
        "/jobs", params={"job_type": JobType.MESSAGE_SEND.value}, headers=internal_headers
    )
    assert response.status_code == 200
    [listed] = response.json()
    assert listed["id"] == str(job.id)
    assert listed["status"] == "pending"

    response = await client.get(f"/jobs/{job.id}", headers=internal_headers)
    assert response.json()["payload"] == job.payload

    response = await client.get(f"/jobs/{uuid.uuid4()}", headers=internal_headers)
    assert response.status_code == 404
