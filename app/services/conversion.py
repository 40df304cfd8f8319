"""
Proforma -> invoice conversion.

Full conversion copies the proforma into one invoice and flips the proforma to
CONVERTED. Partial conversion invoices part of it; the proforma stays PENDING
until the invoices created from it add up to its amount.

Both flows claim the proforma with a conditional UPDATE (status must still be
PENDING) inside the same transaction that creates the invoice. Payment link
issuance runs after the commit and its failure never undoes the conversion;
it is reported back as a warning.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, InvalidStateError, LifecycleError, NotFoundError, ValidationError
from app.models.invoice import DocumentType, Invoice, InvoiceStatus
from app.models.invoice_item import InvoiceItem
from app.services.documents import build_items, get_document, next_invoice_number
from app.services.notifications import create_notification
from app.services.payment_links import issue_payment_link
from app.services.wave_client import WaveClient, WaveClientFactory

logger = logging.getLogger(__name__)


def _check_convertible(proforma: Invoice) -> None:
    if proforma.type != DocumentType.PROFORMA.value:
        raise InvalidStateError("Seule une proforma peut être convertie en facture")
    if proforma.status != InvoiceStatus.PENDING.value:
        raise InvalidStateError(
            "Cette proforma n'est plus en attente et ne peut pas être convertie",
            currentStatus=proforma.status,
        )


def _check_paid_date(request) -> None:
    if request.mark_as_paid and not request.paid_date:
        raise ValidationError("La date de paiement est requise pour marquer la facture comme payée")


def _claim_proforma(db: Session, user_id: int, proforma: Invoice) -> None:
    """PENDING -> CONVERTED, only if nobody converted it first."""
    claimed = db.query(Invoice).filter(
        Invoice.id == proforma.id,
        Invoice.user_id == user_id,
        Invoice.type == DocumentType.PROFORMA.value,
        Invoice.status == InvoiceStatus.PENDING.value,
    ).update(
        {"status": InvoiceStatus.CONVERTED.value, "updated_at": datetime.utcnow()},
        synchronize_session=False,
    )
    if claimed != 1:
        db.rollback()
        raise InvalidStateError("Cette proforma a déjà été convertie")


def _new_invoice(db: Session, user_id: int, proforma: Invoice, request, amount: Decimal, **fields) -> Invoice:
    return Invoice(
        user_id=user_id,
        invoice_number=next_invoice_number(db, user_id, DocumentType.INVOICE.value),
        type=DocumentType.INVOICE.value,
        status=InvoiceStatus.PAID.value if request.mark_as_paid else InvoiceStatus.PENDING.value,
        amount=amount,
        paid_date=request.paid_date if request.mark_as_paid else None,
        payment_method=request.payment_method,
        project_id=proforma.project_id,
        parent_proforma_id=proforma.id,
        **fields,
    )


def _commit_conversion(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning("[Conversion] Invoice number collision, conversion rolled back: %s", e)
        raise ConflictError("Un autre document a été créé au même moment, veuillez réessayer")


async def _maybe_issue_link(
    db: Session,
    user_id: int,
    invoice: Invoice,
    request,
    wave_factory: WaveClientFactory,
) -> Optional[str]:
    """Returns a warning message when the link could not be issued, None otherwise."""
    if not request.generate_payment_link or request.mark_as_paid:
        return None
    if request.payment_method not in (None, "WAVE"):
        return "Le lien de paiement n'est disponible que pour le mode de paiement Wave"
    try:
        await issue_payment_link(db, user_id, invoice.id, wave_factory=wave_factory)
    except LifecycleError as e:
        logger.warning("[Conversion] Invoice %s created without payment link: %s", invoice.invoice_number, e.message)
        return f"Facture créée mais le lien de paiement n'a pas pu être généré: {e.message}"
    db.refresh(invoice)
    return None


def _notify_conversion(db: Session, user_id: int, proforma: Invoice, invoice: Invoice, partial: bool) -> None:
    kind = "partiellement convertie" if partial else "convertie"
    create_notification(
        db,
        user_id=user_id,
        title="Proforma convertie",
        message=f"La proforma {proforma.invoice_number} a été {kind} en facture {invoice.invoice_number}",
        type="SUCCESS",
        related_type="invoice",
        related_id=invoice.id,
        action_url=f"/invoices/{invoice.id}",
        metadata={
            "proformaNumber": proforma.invoice_number,
            "invoiceNumber": invoice.invoice_number,
            "amount": str(invoice.amount),
            "partial": partial,
        },
    )


async def convert_proforma(
    db: Session,
    user_id: int,
    proforma_id: int,
    request,
    wave_factory: WaveClientFactory = WaveClient,
) -> Dict[str, Any]:
    _check_paid_date(request)

    proforma = get_document(db, user_id, proforma_id)
    _check_convertible(proforma)

    previous = db.query(func.count(Invoice.id)).filter(
        Invoice.parent_proforma_id == proforma.id,
        Invoice.type == DocumentType.INVOICE.value,
    ).scalar()
    if previous:
        logger.warning(
            "[Conversion] Full conversion of %s after %s partial conversion(s); full amount is invoiced again",
            proforma.invoice_number, previous,
        )

    _claim_proforma(db, user_id, proforma)

    invoice = _new_invoice(
        db, user_id, proforma, request,
        amount=proforma.amount,
        due_date=proforma.due_date,
        notes=proforma.notes,
        client_name=proforma.client_name,
        client_email=proforma.client_email,
        client_address=proforma.client_address,
        client_phone=proforma.client_phone,
        items=[
            InvoiceItem(
                name=item.name,
                description=item.description,
                unit_price=item.unit_price,
                quantity=item.quantity,
                unit=item.unit,
                total_price=item.total_price,
            )
            for item in proforma.items
        ],
    )
    db.add(invoice)
    _commit_conversion(db)
    db.refresh(invoice)
    db.refresh(proforma)
    logger.info("[Conversion] Proforma %s converted to %s", proforma.invoice_number, invoice.invoice_number)

    _notify_conversion(db, user_id, proforma, invoice, partial=False)
    warning = await _maybe_issue_link(db, user_id, invoice, request, wave_factory)

    if warning:
        message = "Facture créée avec succès, sans lien de paiement"
    elif invoice.payment_link:
        message = "Facture créée avec succès et lien de paiement généré"
    else:
        message = "Facture créée avec succès"
    return {
        "invoice": invoice,
        "paymentLink": invoice.payment_link,
        "warning": warning,
        "message": message,
    }


async def partial_convert_proforma(
    db: Session,
    user_id: int,
    proforma_id: int,
    request,
    wave_factory: WaveClientFactory = WaveClient,
) -> Dict[str, Any]:
    _check_paid_date(request)

    items = build_items(request.selected_services)
    if items:
        amount = sum((item.total_price for item in items), Decimal("0"))
    elif request.amount is not None:
        amount = Decimal(request.amount)
    else:
        raise ValidationError("Indiquez un montant ou sélectionnez au moins un service")

    # Lock the proforma row for the whole conversion (no-op on SQLite)
    proforma = db.query(Invoice).filter(
        Invoice.id == proforma_id,
        Invoice.user_id == user_id,
    ).with_for_update().first()
    if not proforma:
        raise NotFoundError("Proforma non trouvée")
    _check_convertible(proforma)

    if amount <= 0 or amount > proforma.amount:
        raise ValidationError(
            "Le montant à facturer doit être positif et ne pas dépasser le montant de la proforma",
            details=f"Montant de la proforma: {proforma.amount}",
        )

    client_info = request.client_info
    project_client = proforma.project.client if proforma.project else None

    def pick(field: str):
        provided = getattr(client_info, field) if client_info else None
        from_project = getattr(project_client, field) if project_client else None
        return provided or from_project or getattr(proforma, f"client_{field}")

    invoice = _new_invoice(
        db, user_id, proforma, request,
        amount=amount,
        due_date=request.due_date or proforma.due_date,
        notes=request.notes,
        client_name=pick("name"),
        client_email=pick("email"),
        client_address=pick("address"),
        client_phone=pick("phone"),
        items=items,
    )
    db.add(invoice)
    db.flush()

    invoiced = db.query(func.coalesce(func.sum(Invoice.amount), 0)).filter(
        Invoice.parent_proforma_id == proforma.id,
        Invoice.type == DocumentType.INVOICE.value,
    ).scalar()
    invoiced = Decimal(invoiced)
    fully_converted = invoiced >= Decimal(proforma.amount)

    if fully_converted:
        _claim_proforma(db, user_id, proforma)

    _commit_conversion(db)
    db.refresh(invoice)
    db.refresh(proforma)
    logger.info(
        "[Conversion] Partial invoice %s from %s (%s / %s invoiced)",
        invoice.invoice_number, proforma.invoice_number, invoiced, proforma.amount,
    )

    # Individual calls are bounded by the proforma amount but their sum is not;
    # report overshoot instead of refusing it.
    warnings = []
    if invoiced > Decimal(proforma.amount):
        logger.warning("[Conversion] Proforma %s over-invoiced: %s > %s", proforma.invoice_number, invoiced, proforma.amount)
        warnings.append(
            f"Le total facturé ({invoiced}) dépasse le montant de la proforma ({proforma.amount})"
        )

    _notify_conversion(db, user_id, proforma, invoice, partial=True)
    link_warning = await _maybe_issue_link(db, user_id, invoice, request, wave_factory)
    if link_warning:
        warnings.append(link_warning)

    return {
        "invoice": invoice,
        "paymentLink": invoice.payment_link,
        "totalInvoicedAmount": invoiced,
        "remainingAmount": Decimal(proforma.amount) - invoiced,
        "isFullyConverted": fully_converted,
        "warning": " ; ".join(warnings) if warnings else None,
        "message": (
            "Facture partielle créée avec succès et lien de paiement généré"
            if invoice.payment_link
            else "Facture partielle créée avec succès"
        ),
    }


def conversion_status(db: Session, user_id: int, proforma_id: int) -> Dict[str, Any]:
    proforma = get_document(db, user_id, proforma_id, DocumentType.PROFORMA.value)
    conversions = [c for c in proforma.conversions if c.type == DocumentType.INVOICE.value]

    total = Decimal(proforma.amount)
    invoiced = sum((Decimal(c.amount) for c in conversions), Decimal("0"))
    remaining = total - invoiced
    percentage = float(invoiced / total * 100) if total > 0 else 0.0

    return {
        "proforma": proforma,
        "conversionStats": {
            "totalAmount": total,
            "invoicedAmount": invoiced,
            "remainingAmount": remaining,
            "conversionPercentage": round(percentage, 2),
            "isFullyConverted": remaining <= 0,
            "numberOfConversions": len(conversions),
        },
        "conversions": conversions,
    }
