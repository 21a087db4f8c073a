# music_portal/models/__init__.py
"""Import all models here so metadata is complete for Alembic and create_all."""
from .base import Base

# Shared models
from .shared.school import School

# Tenant-specific models
from .tenant_specific.user import User, UserRole, RefreshToken, LoginAttempt
from .tenant_specific.school_config import (
    Term, Location, Room, Instrument, LessonType, LessonCategory, LessonDuration, PricingPackage
)
from .tenant_specific.teacher import Teacher, TeacherInstrument
from .tenant_specific.family import Family, Parent
from .tenant_specific.student import Student, AgeGroup
from .tenant_specific.lesson import Lesson, LessonEnrollment
from .tenant_specific.hybrid_booking import HybridLessonPattern, HybridBooking, HybridPatternType, BookingStatus
from .tenant_specific.attendance import Attendance, AttendanceStatus
from .tenant_specific.note import Note, NoteStatus
from .tenant_specific.invoice import Invoice, InvoiceItem, Payment, InvoiceStatus, PaymentMethod
from .tenant_specific.meet_and_greet import MeetAndGreet, MeetAndGreetStatus
from .tenant_specific.google_drive import (
    GoogleDriveAuth, GoogleDriveFolder, GoogleDriveFile, SyncStatus, FileVisibility, UploadSource
)
