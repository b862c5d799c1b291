from .tenancy import Organization, OrganizationMembership
from .auth import User, SessionToken
from .security import SecurityEvent
from .fleet import Aircraft, FlightType, Lesson
from .bookings import Booking, BookingDetails
from .billing import Chargeable, InvoiceSequence, Invoice, InvoiceItem, Transaction, Payment, AccountBalance
from .audit import AuditLog

__all__ = [
    'Organization', 'OrganizationMembership',
    'User', 'SessionToken', 'SecurityEvent',
    'Aircraft', 'FlightType', 'Lesson',
    'Booking', 'BookingDetails',
    'Chargeable', 'InvoiceSequence', 'Invoice', 'InvoiceItem',
    'Transaction', 'Payment', 'AccountBalance',
    'AuditLog',
]
