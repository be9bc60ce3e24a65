"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external scheduler when no long-running worker is deployed.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from fieldops.core.deps import get_db, verify_internal_secret
from fieldops.schemas.jobs import BatchStatsRead
from fieldops.services import booking_service

router = APIRouter(
    prefix="/internal/scheduled",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


class ExpireHoldsResponse(BaseModel):
    expired: int


@router.post("/outbox", response_model=BatchStatsRead)
async def drain_outbox(db: Session = Depends(get_db)):
    """Process one batch of due jobs (same path as the worker loop)."""
    from fieldops import worker

    stats = await worker.process_batch(db, worker_id="scheduler-tick")
    return BatchStatsRead(**stats.as_dict())


@router.post("/expire-holds", response_model=ExpireHoldsResponse)
def expire_holds(db: Session = Depends(get_db)):
    """Mark lapsed booking holds expired."""
    return ExpireHoldsResponse(expired=booking_service.expire_holds(db))
