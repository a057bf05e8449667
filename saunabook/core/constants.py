"""Common application-wide constants."""

import re

DEFAULT_TIMEZONE = "Europe/London"

# Rolling window materialized ahead of today when a template has no end date
DEFAULT_GENERATION_HORIZON_MONTHS = 3

TIME_OF_DAY_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")

# Sunday = 0, matching the stored ``day_of_week`` column
DAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")
DAY_LABELS = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)

# Metadata for system-driven booking cancellations
SYSTEM_ACTOR = "system"
INSTANCE_CANCELED_REASON = "instance_canceled"
SCHEDULE_CHANGED_REASON = "schedule_changed"


__all__ = [
    "DEFAULT_TIMEZONE",
    "DEFAULT_GENERATION_HORIZON_MONTHS",
    "TIME_OF_DAY_PATTERN",
    "DAY_NAMES",
    "DAY_LABELS",
    "SYSTEM_ACTOR",
    "INSTANCE_CANCELED_REASON",
    "SCHEDULE_CHANGED_REASON",
]
