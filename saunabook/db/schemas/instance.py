from datetime import datetime
from pydantic import BaseModel


class SessionInstance(BaseModel):
    id: int
    template_id: int
    start_time: datetime
    end_time: datetime
    status: str

    class Config:
        from_attributes = True


class InstanceAvailability(BaseModel):
    instance_id: int
    template_id: int
    template_name: str
    start_time: datetime
    end_time: datetime
    capacity: int
    booked: int
    spots_remaining: int
    is_full: bool
    pricing_type: str
    visibility: str


class AvailabilityResponse(BaseModel):
    sessions: list[InstanceAvailability]
    generation_scheduled: list[int] = []


class InstanceCancellation(BaseModel):
    success: bool = True
    instance: SessionInstance
    cancelled_bookings: list[int] = []
    failed_refunds: list[int] = []
    deleted: bool = False
