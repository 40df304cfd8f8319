"""
Invoice/proforma persistence scoped to the authenticated user.

Every lookup filters on user_id; a document owned by someone else is reported
exactly like a missing one.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core.billing_rules import INVOICE_NUMBER_DIGITS, INVOICE_NUMBER_PREFIXES
from app.core.errors import InvalidStateError, NotFoundError, ValidationError
from app.models.invoice import ALLOWED_STATUSES, DocumentType, Invoice, InvoiceStatus
from app.models.invoice_item import InvoiceItem
from app.models.project import Project

logger = logging.getLogger(__name__)

# Invoices in these states are closed for edits
_LOCKED_INVOICE_STATUSES = (InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value)


def next_invoice_number(db: Session, user_id: int, doc_type: str, year: Optional[int] = None) -> str:
    """
    Next number in the <PREFIX>-<YEAR>-<NNN> sequence of this user and type.
    The (user_id, type, invoice_number) unique constraint backs this up when two
    requests race for the same number.
    """
    prefix = INVOICE_NUMBER_PREFIXES[DocumentType(doc_type).value]
    year = year or datetime.utcnow().year
    stem = f"{prefix}-{year}-"

    numbers = db.query(Invoice.invoice_number).filter(
        Invoice.user_id == user_id,
        Invoice.type == DocumentType(doc_type).value,
        Invoice.invoice_number.startswith(stem),
    ).all()

    highest = 0
    for (number,) in numbers:
        suffix = number[len(stem):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))

    return f"{stem}{highest + 1:0{INVOICE_NUMBER_DIGITS}d}"


def get_document(db: Session, user_id: int, document_id: int, doc_type: Optional[str] = None) -> Invoice:
    query = db.query(Invoice).filter(Invoice.id == document_id, Invoice.user_id == user_id)
    if doc_type:
        query = query.filter(Invoice.type == doc_type)
    document = query.first()
    if not document:
        if doc_type == DocumentType.PROFORMA.value:
            raise NotFoundError("Proforma non trouvée")
        raise NotFoundError("Facture non trouvée")
    return document


def list_documents(
    db: Session,
    user_id: int,
    doc_type: Optional[str] = None,
    status: Optional[str] = None,
    project_id: Optional[int] = None,
) -> List[Invoice]:
    query = db.query(Invoice).filter(Invoice.user_id == user_id)
    if doc_type:
        query = query.filter(Invoice.type == doc_type)
    if status:
        query = query.filter(Invoice.status == status)
    if project_id:
        query = query.filter(Invoice.project_id == project_id)
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def build_items(items: Iterable) -> List[InvoiceItem]:
    """Turn request line items into rows, fixing total_price = unit_price * quantity."""
    rows = []
    for item in items:
        unit_price = Decimal(item.unit_price)
        quantity = Decimal(item.quantity)
        rows.append(InvoiceItem(
            name=item.name,
            description=item.description,
            unit_price=unit_price,
            quantity=quantity,
            unit=item.unit,
            total_price=unit_price * quantity,
        ))
    return rows


def create_document(db: Session, user_id: int, data) -> Invoice:
    doc_type = DocumentType(data.type)

    try:
        status = InvoiceStatus(data.status) if data.status else InvoiceStatus.PENDING
    except ValueError:
        raise ValidationError(f"Statut inconnu: {data.status}")
    if status not in ALLOWED_STATUSES[doc_type]:
        raise ValidationError(f"Statut {status.value} invalide pour un document {doc_type.value}")

    items = build_items(data.items)
    amount = data.amount
    if amount is None:
        if not items:
            raise ValidationError("Le montant est requis lorsqu'aucune ligne n'est fournie")
        amount = sum((item.total_price for item in items), Decimal("0"))

    paid_date = data.paid_date
    if status == InvoiceStatus.PAID and not paid_date:
        paid_date = date.today()

    client = None
    if data.project_id:
        project = db.query(Project).filter(
            Project.id == data.project_id,
            Project.user_id == user_id,
        ).first()
        if not project:
            raise NotFoundError("Projet non trouvé")
        client = project.client

    document = Invoice(
        user_id=user_id,
        invoice_number=next_invoice_number(db, user_id, doc_type.value),
        type=doc_type.value,
        status=status.value,
        amount=amount,
        due_date=data.due_date,
        paid_date=paid_date if status == InvoiceStatus.PAID else None,
        payment_method=data.payment_method,
        notes=data.notes,
        project_id=data.project_id,
        # Snapshot of the client at creation time
        client_name=(client.name if client else None) or data.client_name,
        client_email=(client.email if client else None) or data.client_email,
        client_address=(client.address if client else None) or data.client_address,
        client_phone=(client.phone if client else None) or data.client_phone,
        items=items,
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    logger.info("[Documents] Created %s %s for user %s", document.type, document.invoice_number, user_id)
    return document


def _apply_guarded_update(
    db: Session,
    user_id: int,
    document: Invoice,
    values: dict,
    allowed_statuses: Iterable[str],
) -> Invoice:
    """
    Write `values` only if the document is still in one of `allowed_statuses`.
    The status check and the write are one UPDATE, so a concurrent transition
    cannot slip in between them.
    """
    values = dict(values)
    values["updated_at"] = datetime.utcnow()
    updated = db.query(Invoice).filter(
        Invoice.id == document.id,
        Invoice.user_id == user_id,
        Invoice.status.in_(list(allowed_statuses)),
    ).update(values, synchronize_session=False)
    if updated != 1:
        db.rollback()
        raise InvalidStateError("Ce document ne peut plus être modifié dans son état actuel")
    db.commit()
    db.refresh(document)
    return document


def update_invoice(db: Session, user_id: int, invoice_id: int, fields: dict) -> Invoice:
    invoice = get_document(db, user_id, invoice_id, DocumentType.INVOICE.value)
    if invoice.status in _LOCKED_INVOICE_STATUSES:
        raise InvalidStateError("Une facture payée ou annulée ne peut plus être modifiée")
    if not fields:
        return invoice
    allowed = [s.value for s in ALLOWED_STATUSES[DocumentType.INVOICE] if s.value not in _LOCKED_INVOICE_STATUSES]
    return _apply_guarded_update(db, user_id, invoice, fields, allowed)


def update_proforma(db: Session, user_id: int, proforma_id: int, fields: dict) -> Invoice:
    """Edit amount, due date, notes or client snapshot while the proforma is still PENDING."""
    proforma = get_document(db, user_id, proforma_id, DocumentType.PROFORMA.value)
    if proforma.status != InvoiceStatus.PENDING.value:
        raise InvalidStateError(
            "Seule une proforma en attente peut être modifiée",
            currentStatus=proforma.status,
        )
    if not fields:
        return proforma
    return _apply_guarded_update(db, user_id, proforma, fields, [InvoiceStatus.PENDING.value])


def delete_document(db: Session, user_id: int, document_id: int, doc_type: Optional[str] = None) -> None:
    document = get_document(db, user_id, document_id, doc_type)
    db.delete(document)
    db.commit()
    logger.info("[Documents] Deleted %s %s for user %s", document.type, document.invoice_number, user_id)
