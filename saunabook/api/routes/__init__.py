from . import (
    auth,
    sessions,
    templates,
    instances,
    bookings,
    waitlist,
)

__all__ = [
    "auth",
    "sessions",
    "templates",
    "instances",
    "bookings",
    "waitlist",
]
