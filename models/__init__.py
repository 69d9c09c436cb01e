from .db import db
from .audit_log import AuditLog
from .member import Member
from .recurring_lesson import RecurringLesson
from .booking import Booking, BookingStatus, PaymentStatus, BillingMode, SeriesState
from .slot import TimeSlot, SlotState
from .transaction import Transaction
from .ip_rate_limit import IpRateLimit
