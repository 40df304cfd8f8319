"""
Invoices and proformas: CRUD, proforma conversion, Wave payment links and
manual payment recording.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.dependencies.auth import get_current_user_id
from app.dependencies.wave import get_wave_client_factory
from app.core.errors import LifecycleError
from app.models.invoice import DocumentType, InvoiceStatus
from app.schemas.invoice import (
    ConvertRequest,
    InvoiceCreate,
    InvoiceUpdate,
    MarkPaidRequest,
    PartialConvertRequest,
    PaymentLinkRequest,
    serialize_invoice,
)
from app.services import conversion, documents, payment_links, payments
from app.services.wave_client import WaveClientFactory

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def list_invoices(
    type: Optional[DocumentType] = None,
    status: Optional[str] = None,
    project_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    docs = documents.list_documents(
        db, user_id,
        doc_type=type.value if type else None,
        status=status,
        project_id=project_id,
    )
    return [serialize_invoice(d) for d in docs]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_invoice(
    body: InvoiceCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    wave_factory: WaveClientFactory = Depends(get_wave_client_factory),
):
    document = documents.create_document(db, user_id, body)

    warning = None
    wants_link = (
        body.generate_payment_link
        and document.type == DocumentType.INVOICE.value
        and document.status != InvoiceStatus.PAID.value
    )
    if wants_link:
        try:
            document = await payment_links.issue_payment_link(db, user_id, document.id, wave_factory=wave_factory)
        except LifecycleError as e:
            logger.warning("[Wave] Invoice %s created without payment link: %s", document.invoice_number, e.message)
            warning = f"Facture créée mais le lien de paiement n'a pas pu être généré: {e.message}"

    return {
        "invoice": serialize_invoice(document),
        "paymentLink": document.payment_link,
        "warning": warning,
    }


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return serialize_invoice(documents.get_document(db, user_id, invoice_id))


@router.patch("/{invoice_id}")
async def update_invoice(
    invoice_id: int,
    body: InvoiceUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    invoice = documents.update_invoice(db, user_id, invoice_id, body.model_dump(exclude_unset=True))
    return serialize_invoice(invoice)


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    documents.delete_document(db, user_id, invoice_id)
    return {"message": "Document supprimé avec succès"}


@router.post("/{invoice_id}/convert")
async def convert_proforma(
    invoice_id: int,
    body: ConvertRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    wave_factory: WaveClientFactory = Depends(get_wave_client_factory),
):
    result = await conversion.convert_proforma(db, user_id, invoice_id, body, wave_factory=wave_factory)
    result["invoice"] = serialize_invoice(result["invoice"])
    return result


@router.post("/{invoice_id}/partial-convert")
async def partial_convert_proforma(
    invoice_id: int,
    body: PartialConvertRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    wave_factory: WaveClientFactory = Depends(get_wave_client_factory),
):
    result = await conversion.partial_convert_proforma(db, user_id, invoice_id, body, wave_factory=wave_factory)
    result["invoice"] = serialize_invoice(result["invoice"])
    # Amounts travel as strings, like every other amount in the API
    result["totalInvoicedAmount"] = str(result["totalInvoicedAmount"])
    result["remainingAmount"] = str(result["remainingAmount"])
    return result


@router.get("/{invoice_id}/conversion-status")
async def get_conversion_status(
    invoice_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    result = conversion.conversion_status(db, user_id, invoice_id)
    stats = result["conversionStats"]
    for key in ("totalAmount", "invoicedAmount", "remainingAmount"):
        stats[key] = str(stats[key])
    return {
        "proforma": serialize_invoice(result["proforma"]),
        "conversionStats": stats,
        "conversions": [serialize_invoice(c) for c in result["conversions"]],
    }


@router.post("/{invoice_id}/payment-link")
async def create_payment_link(
    invoice_id: int,
    body: Optional[PaymentLinkRequest] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    wave_factory: WaveClientFactory = Depends(get_wave_client_factory),
):
    regenerate = bool(body and body.regenerate)
    invoice = await payment_links.issue_payment_link(
        db, user_id, invoice_id, regenerate=regenerate, wave_factory=wave_factory,
    )
    return {
        "message": (
            "Lien de paiement Wave régénéré avec succès"
            if regenerate
            else "Lien de paiement Wave généré avec succès"
        ),
        "paymentLink": invoice.payment_link,
        "waveCheckoutId": invoice.wave_checkout_id,
    }


@router.delete("/{invoice_id}/payment-link")
async def delete_payment_link(
    invoice_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    payment_links.revoke_payment_link(db, user_id, invoice_id)
    return {"message": "Lien de paiement supprimé avec succès"}


@router.put("/{invoice_id}/mark-paid")
async def mark_invoice_paid(
    invoice_id: int,
    body: MarkPaidRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    invoice = payments.mark_invoice_paid(
        db, user_id, invoice_id,
        payment_method=body.payment_method,
        paid_date=body.paid_date,
        notes=body.notes,
        transaction_id=body.transaction_id,
    )
    return {
        "message": "Facture marquée comme payée avec succès",
        "invoice": serialize_invoice(invoice),
    }
