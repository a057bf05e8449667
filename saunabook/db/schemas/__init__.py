from .template import (
    ScheduleIn,
    OneOffDateIn,
    SessionTemplateCreate,
    SessionTemplateUpdate,
    SessionTemplate,
    ScheduleGroupOut,
    TemplateSaveResult,
    GenerationResult,
)
from .instance import SessionInstance, InstanceAvailability, AvailabilityResponse, InstanceCancellation
from .booking import (
    BookingCreate,
    BookingUpdate,
    BookingCancel,
    BookingMove,
    Booking,
    BookingResult,
    CancellationResult,
)
from .waitlist import WaitingListJoin, WaitingListEntry, WaitingListPosition
