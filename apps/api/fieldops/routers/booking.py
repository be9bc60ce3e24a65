"""Booking router - holds and appointments behind the capacity check.

Rejections come back as 409 with ``{"detail": {"code": "<rejection>"}}``.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from fieldops.core.deps import get_db
from fieldops.db.enums import BookingRejection
from fieldops.schemas.booking import AppointmentCreate, AppointmentRead, HoldCreate, HoldRead
from fieldops.services import booking_service, policy_service

router = APIRouter(prefix="/booking", tags=["booking"])


def _conflict(exc: booking_service.BookingRejected) -> HTTPException:
    if exc.code == BookingRejection.HOLD_NOT_FOUND:
        return HTTPException(status_code=404, detail={"code": exc.code.value})
    return HTTPException(status_code=409, detail={"code": exc.code.value})


@router.post("/holds", response_model=HoldRead, status_code=201)
def create_hold(data: HoldCreate, db: Session = Depends(get_db)):
    policy = policy_service.load_policy_snapshot(db)
    try:
        hold = booking_service.create_hold(
            db, data.contact_id, data.start_at, data.duration_minutes, policy
        )
    except booking_service.BookingRejected as exc:
        raise _conflict(exc) from exc
    return hold


@router.post("/holds/{hold_id}/confirm", response_model=AppointmentRead, status_code=201)
def confirm_hold(hold_id: UUID, db: Session = Depends(get_db)):
    policy = policy_service.load_policy_snapshot(db)
    try:
        appointment = booking_service.confirm_hold(db, hold_id, policy)
    except booking_service.BookingRejected as exc:
        raise _conflict(exc) from exc
    return appointment


@router.delete("/holds/{hold_id}", status_code=204)
def release_hold(hold_id: UUID, db: Session = Depends(get_db)):
    if not booking_service.release_hold(db, hold_id):
        raise HTTPException(status_code=404, detail="Active hold not found")


@router.post("/appointments", response_model=AppointmentRead, status_code=201)
def book_appointment(data: AppointmentCreate, db: Session = Depends(get_db)):
    policy = policy_service.load_policy_snapshot(db)
    try:
        appointment = booking_service.book_appointment(
            db, data.contact_id, data.start_at, data.duration_minutes, policy
        )
    except booking_service.BookingRejected as exc:
        raise _conflict(exc) from exc
    return appointment
