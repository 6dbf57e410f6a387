from __future__ import annotations

import enum


class AppointmentStatus(enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class AppointmentType(enum.Enum):
    CHECKUP = "checkup"
    CLEANING = "cleaning"
    CONSULTATION = "consultation"
    TREATMENT = "treatment"
    EMERGENCY = "emergency"
    FOLLOW_UP = "follow_up"
