from . import (
    availability_service,
    booking_service,
    instance_service,
    notification_service,
    payment_service,
    template_service,
    waitlist_service,
)
__all__ = [
    "availability_service",
    "booking_service",
    "instance_service",
    "notification_service",
    "payment_service",
    "template_service",
    "waitlist_service",
]
