from app.models.user import User
from app.models.client import Client
from app.models.project import Project
from app.models.invoice import Invoice, DocumentType, InvoiceStatus
from app.models.invoice_item import InvoiceItem
from app.models.expense import Expense
from app.models.payout_reversal import PayoutReversal
from app.models.notification import Notification

__all__ = [
    "User",
    "Client",
    "Project",
    "Invoice",
    "DocumentType",
    "InvoiceStatus",
    "InvoiceItem",
    "Expense",
    "PayoutReversal",
    "Notification",
]
