from .organization import Organization
from .user import User, UserRole
from .session_template import SessionTemplate, PricingType, Visibility
from .session_schedule import SessionSchedule
from .session_one_off_date import SessionOneOffDate
from .session_instance import SessionInstance, InstanceStatus
from .booking import Booking, BookingStatus, PaymentStatus, ACTIVE_BOOKING_STATUSES
from .waitlist import WaitingListEntry, WaitlistStatus
from .audit_log import AuditLog, ActorType
