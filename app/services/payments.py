"""
Invoice payment state: manual mark-as-paid and Wave checkout confirmations.

Both go through the same conditional UPDATE on status, so an invoice can only
be moved to PAID once even when a user click and a webhook arrive together.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.billing_rules import EXPENSE_CATEGORY_PAYMENT_RECEIVED
from app.core.errors import InvalidStateError
from app.models.expense import Expense
from app.models.invoice import DocumentType, Invoice, InvoiceStatus
from app.services.documents import get_document
from app.services.notifications import create_notification

logger = logging.getLogger(__name__)

_PAYABLE_STATUSES = (InvoiceStatus.PENDING.value, InvoiceStatus.OVERDUE.value)


def _transition_to_paid(db: Session, invoice: Invoice, values: Dict[str, Any]) -> bool:
    values = dict(values)
    values["status"] = InvoiceStatus.PAID.value
    values["updated_at"] = datetime.utcnow()
    updated = db.query(Invoice).filter(
        Invoice.id == invoice.id,
        Invoice.user_id == invoice.user_id,
        Invoice.status.in_(_PAYABLE_STATUSES),
    ).update(values, synchronize_session=False)
    return updated == 1


def mark_invoice_paid(
    db: Session,
    user_id: int,
    invoice_id: int,
    payment_method: str = "WAVE",
    paid_date: Optional[date] = None,
    notes: Optional[str] = None,
    transaction_id: Optional[str] = None,
) -> Invoice:
    invoice = get_document(db, user_id, invoice_id)

    if invoice.type != DocumentType.INVOICE.value:
        raise InvalidStateError("Seule une facture peut être marquée comme payée")
    if invoice.status == InvoiceStatus.PAID.value:
        raise InvalidStateError("Cette facture est déjà marquée comme payée")
    if invoice.status not in _PAYABLE_STATUSES:
        raise InvalidStateError(
            "Cette facture ne peut pas être marquée comme payée",
            currentStatus=invoice.status,
        )

    values: Dict[str, Any] = {
        "paid_date": paid_date or date.today(),
        "payment_method": payment_method,
    }
    if notes:
        values["notes"] = f"{invoice.notes}\n{notes}" if invoice.notes else notes

    if not _transition_to_paid(db, invoice, values):
        db.rollback()
        raise InvalidStateError("Cette facture est déjà marquée comme payée")
    db.commit()
    db.refresh(invoice)
    logger.info("[Payments] Invoice %s marked as paid (%s)", invoice.invoice_number, payment_method)

    create_notification(
        db,
        user_id=user_id,
        title="Facture payée",
        message=f"La facture {invoice.invoice_number} a été marquée comme payée ({payment_method})",
        type="SUCCESS",
        related_type="invoice",
        related_id=invoice.id,
        action_url=f"/invoices/{invoice.id}",
        metadata={
            "invoiceNumber": invoice.invoice_number,
            "amount": str(invoice.amount),
            "paymentMethod": payment_method,
            "transactionId": transaction_id,
        },
    )
    return invoice


def _find_invoice_for_checkout(db: Session, data: Dict[str, Any]) -> Optional[Invoice]:
    invoices = db.query(Invoice).filter(Invoice.type == DocumentType.INVOICE.value)

    checkout_id = data.get("id")
    if checkout_id:
        invoice = invoices.filter(Invoice.wave_checkout_id == checkout_id).first()
        if invoice:
            return invoice

    # Invoice numbers are only unique per user, so a reference is trusted only when unambiguous
    reference = data.get("client_reference") or data.get("reference")
    if reference:
        matches = invoices.filter(Invoice.invoice_number == reference).limit(2).all()
        if len(matches) == 1:
            return matches[0]
        if matches:
            logger.warning("[Payments] Reference %s matches several invoices, ignoring it", reference)
    return None


def _paid_date_from(data: Dict[str, Any]) -> date:
    raw = data.get("when_completed") or data.get("updated_at")
    if raw:
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
        except ValueError:
            logger.warning("[Payments] Unparseable completion date %r, using today", raw)
    return date.today()


def confirm_wave_payment(db: Session, data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a successful Wave checkout to its invoice. Replays are acknowledged without effect."""
    invoice = _find_invoice_for_checkout(db, data)
    if not invoice:
        logger.warning("[Payments] No invoice for Wave checkout %s / %s", data.get("id"), data.get("client_reference"))
        return {"handled": False, "reason": "invoice_not_found"}

    if invoice.status == InvoiceStatus.PAID.value:
        logger.info("[Payments] Invoice %s already paid, ignoring replay", invoice.invoice_number)
        return {"handled": True, "invoiceId": invoice.id, "alreadyPaid": True}

    paid_on = _paid_date_from(data)
    values = {"paid_date": paid_on, "payment_method": "WAVE"}
    if data.get("id"):
        values["wave_checkout_id"] = data["id"]
    if not _transition_to_paid(db, invoice, values):
        db.rollback()
        logger.info("[Payments] Invoice %s not payable anymore (status %s)", invoice.invoice_number, invoice.status)
        return {"handled": True, "invoiceId": invoice.id, "alreadyPaid": invoice.status == InvoiceStatus.PAID.value}

    if invoice.project_id:
        amount = data.get("amount")
        db.add(Expense(
            user_id=invoice.user_id,
            project_id=invoice.project_id,
            description=f"Paiement reçu - Facture {invoice.invoice_number}",
            amount=Decimal(str(amount)) if amount is not None else invoice.amount,
            category=EXPENSE_CATEGORY_PAYMENT_RECEIVED,
            type="PROJECT",
            date=paid_on,
        ))
    db.commit()
    db.refresh(invoice)
    logger.info("[Payments] Wave payment confirmed for invoice %s", invoice.invoice_number)

    create_notification(
        db,
        user_id=invoice.user_id,
        title="Paiement Wave reçu",
        message=f"Le paiement de la facture {invoice.invoice_number} a été reçu via Wave",
        type="INVOICE_PAID",
        related_type="invoice",
        related_id=invoice.id,
        action_url=f"/invoices/{invoice.id}",
        metadata={"invoiceNumber": invoice.invoice_number, "checkoutId": data.get("id")},
    )
    return {"handled": True, "invoiceId": invoice.id, "alreadyPaid": False}


def record_wave_payment_failure(db: Session, data: Dict[str, Any], cancelled: bool) -> Dict[str, Any]:
    invoice = _find_invoice_for_checkout(db, data)
    if not invoice:
        return {"handled": False, "reason": "invoice_not_found"}

    new_status = InvoiceStatus.CANCELLED.value if cancelled else InvoiceStatus.OVERDUE.value
    updated = db.query(Invoice).filter(
        Invoice.id == invoice.id,
        Invoice.status == InvoiceStatus.PENDING.value,
    ).update({"status": new_status, "updated_at": datetime.utcnow()}, synchronize_session=False)
    db.commit()
    if updated:
        logger.info("[Payments] Invoice %s set to %s after failed Wave payment", invoice.invoice_number, new_status)
        create_notification(
            db,
            user_id=invoice.user_id,
            title="Paiement Wave échoué",
            message=f"Le paiement de la facture {invoice.invoice_number} a échoué",
            type="WAVE_PAYMENT_FAILED",
            related_type="invoice",
            related_id=invoice.id,
            action_url=f"/invoices/{invoice.id}",
        )
    return {"handled": True, "invoiceId": invoice.id, "status": new_status if updated else invoice.status}
