from . import (
    attendance, auth, calendar, config, dashboard, families, google_drive, health, hybrid_bookings, invoices,
    lessons, meet_and_greet, notes, parents, resources, schools, students, teachers,
)

__all__ = [
    "attendance",
    "auth",
    "calendar",
    "config",
    "dashboard",
    "families",
    "google_drive",
    "health",
    "hybrid_bookings",
    "invoices",
    "lessons",
    "meet_and_greet",
    "notes",
    "parents",
    "resources",
    "schools",
    "students",
    "teachers",
]
