"""Import all models so SQLAlchemy metadata is fully registered."""

from invoicedesk.db.base import Base

from invoicedesk.models.audit import AuditLog
from invoicedesk.models.customer import Customer
from invoicedesk.models.enums import AttachmentType, DisplayStatus, InvoiceStatus, PaymentMethod
from invoicedesk.models.invoice import (
    Attachment,
    Invoice,
    InvoiceItem,
    InvoiceSequence,
    Payment,
    StatusHistory,
)
from invoicedesk.models.rate_limit import RateLimitCounter
from invoicedesk.models.user import User
from invoicedesk.models.webhook_event import ProcessedWebhookEvent

__all__ = [
    "Base",
    "AuditLog",
    "Customer",
    "AttachmentType",
    "DisplayStatus",
    "InvoiceStatus",
    "PaymentMethod",
    "Attachment",
    "Invoice",
    "InvoiceItem",
    "InvoiceSequence",
    "Payment",
    "StatusHistory",
    "RateLimitCounter",
    "User",
    "ProcessedWebhookEvent",
]
