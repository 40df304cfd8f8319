"""
Invoices and proformas share one table, told apart by `type`.

Client fields are a snapshot taken when the document is created, so a document
keeps rendering the same even after the client record is edited.
"""
from sqlalchemy import Column, Integer, String, Text, ForeignKey, Date, DateTime, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum
from app.db.base import Base


class DocumentType(str, Enum):
    INVOICE = "INVOICE"
    PROFORMA = "PROFORMA"


class InvoiceStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"
    CONVERTED = "CONVERTED"  # Proformas only


ALLOWED_STATUSES = {
    DocumentType.INVOICE: {InvoiceStatus.PENDING, InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED},
    DocumentType.PROFORMA: {InvoiceStatus.PENDING, InvoiceStatus.CONVERTED, InvoiceStatus.CANCELLED},
}


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("user_id", "type", "invoice_number", name="uq_invoices_user_type_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_number = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False, default=DocumentType.INVOICE.value)
    status = Column(String, nullable=False, default=InvoiceStatus.PENDING.value, index=True)

    amount = Column(Numeric(12, 2), nullable=False)

    due_date = Column(Date, nullable=True)
    paid_date = Column(Date, nullable=True)
    payment_method = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    # Wave hosted checkout
    payment_link = Column(String, nullable=True)
    wave_checkout_id = Column(String, nullable=True, index=True)

    client_name = Column(String, nullable=True)
    client_email = Column(String, nullable=True)
    client_address = Column(String, nullable=True)
    client_phone = Column(String, nullable=True)

    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    # Set on invoices produced from a proforma (full or partial conversion)
    parent_proforma_id = Column(Integer, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = relationship("Project")
    items = relationship("InvoiceItem", back_populates="invoice", cascade="all, delete-orphan", order_by="InvoiceItem.id")
    conversions = relationship("Invoice", foreign_keys=[parent_proforma_id], order_by="Invoice.created_at")

    def __repr__(self):
        return f"<Invoice(id={self.id}, number={self.invoice_number}, type={self.type}, status={self.status})>"
