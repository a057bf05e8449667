from datetime import datetime
from pydantic import BaseModel, Field


class BookingCreate(BaseModel):
    template_id: int
    start_time: datetime
    number_of_spots: int = Field(default=1, ge=1)
    notes: str | None = None


class BookingUpdate(BaseModel):
    number_of_spots: int | None = Field(default=None, ge=1)
    notes: str | None = None


class BookingCancel(BaseModel):
    reason: str | None = None


class BookingMove(BaseModel):
    destination_instance_id: int
    admin_override: bool = False


class Booking(BaseModel):
    id: int
    instance_id: int
    user_id: int
    number_of_spots: int
    status: str
    notes: str | None = None
    payment_status: str | None = None
    amount_paid: int | None = None
    booked_at: datetime | None = None
    updated_at: datetime | None = None
    cancelled_at: datetime | None = None

    class Config:
        from_attributes = True


class BookingResult(BaseModel):
    success: bool = True
    booking: Booking


class CancellationResult(BaseModel):
    success: bool = True
    booking: Booking
    refunded: bool
    already_cancelled: bool = False
    warnings: list[str] = []
