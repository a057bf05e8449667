from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ...api import deps
from ...db.session import get_db
from ...db import models, schemas
from ...services import booking_service

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("/me", response_model=list[schemas.Booking])
def my_bookings(
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    return booking_service.list_user_upcoming_bookings(db, user)


@router.post("", response_model=schemas.BookingResult, status_code=201)
def create_booking(
    payload: schemas.BookingCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    booking = booking_service.create_booking(
        db,
        template_id=payload.template_id,
        user=user,
        start_time=payload.start_time,
        spots=payload.number_of_spots,
        notes=payload.notes,
    )
    return schemas.BookingResult(booking=booking)


@router.patch("/{booking_id}", response_model=schemas.BookingResult)
def update_booking(
    booking_id: int,
    payload: schemas.BookingUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    booking = booking_service.update_booking(
        db,
        booking_id,
        actor=user,
        notes=payload.notes,
        spots=payload.number_of_spots,
    )
    return schemas.BookingResult(booking=booking)


@router.post("/{booking_id}/cancel", response_model=schemas.CancellationResult)
def cancel_booking(
    booking_id: int,
    payload: schemas.BookingCancel,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    result = booking_service.cancel_booking_with_refund(
        db, booking_id, actor=user, reason=payload.reason
    )
    return schemas.CancellationResult(
        booking=result.booking,
        refunded=result.refunded,
        already_cancelled=result.already_cancelled,
        warnings=result.warnings,
    )


@router.post("/{booking_id}/move", response_model=schemas.BookingResult)
def move_booking(
    booking_id: int,
    payload: schemas.BookingMove,
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    booking = booking_service.move_booking_to_instance(
        db,
        booking_id,
        payload.destination_instance_id,
        actor=user,
        admin_override=payload.admin_override,
    )
    return schemas.BookingResult(booking=booking)


@router.post("/{booking_id}/check-in", response_model=schemas.BookingResult)
def check_in_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(deps.require_admin),
):
    booking = booking_service.get_managed_booking(db, booking_id, actor=admin)
    booking = booking_service.check_in_booking(db, booking.id)
    return schemas.BookingResult(booking=booking)
