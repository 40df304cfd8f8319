"""
Wave hosted-checkout links attached to invoices.

Regenerating expires the old checkout session at Wave first, then creates a
new one. If creation fails after the old session was expired, the invoice is
left without a link and the caller gets an ExternalServiceError; nothing is
retried automatically.
"""
import logging
import os
from datetime import datetime

from sqlalchemy.orm import Session

from app.core.billing_rules import format_wave_amount, wave_currency
from app.core.errors import ConflictError, ExternalServiceError, InvalidStateError
from app.models.invoice import DocumentType, Invoice, InvoiceStatus
from app.models.user import User
from app.services.documents import get_document
from app.services.wave_client import WaveAPIError, WaveClient, WaveClientFactory, client_for_user

logger = logging.getLogger(__name__)

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000").rstrip("/")


async def issue_payment_link(
    db: Session,
    user_id: int,
    invoice_id: int,
    regenerate: bool = False,
    wave_factory: WaveClientFactory = WaveClient,
) -> Invoice:
    invoice = get_document(db, user_id, invoice_id)

    if invoice.type != DocumentType.INVOICE.value:
        raise InvalidStateError("Un lien de paiement ne peut être généré que pour une facture")
    if invoice.status == InvoiceStatus.PAID.value:
        raise InvalidStateError("Cette facture est déjà payée")
    if invoice.payment_link and not regenerate:
        raise ConflictError(
            "Un lien de paiement existe déjà pour cette facture",
            paymentLink=invoice.payment_link,
        )

    user = db.query(User).filter(User.id == user_id).first()
    wave = client_for_user(user, wave_factory)

    if regenerate and (invoice.payment_link or invoice.wave_checkout_id):
        await _invalidate_current_link(db, user_id, invoice, wave)

    currency = wave_currency(user.currency)
    try:
        session = await wave.create_checkout_session(
            amount=format_wave_amount(invoice.amount, currency),
            currency=currency,
            client_reference=invoice.invoice_number,
            success_url=f"{APP_BASE_URL}/payment/success?invoice={invoice.invoice_number}",
            error_url=f"{APP_BASE_URL}/payment/error?invoice={invoice.invoice_number}",
        )
    except WaveAPIError as e:
        logger.error("[Wave] Checkout creation failed for %s: %s", invoice.invoice_number, e.message)
        details = "L'ancien lien a été invalidé; la facture n'a plus de lien actif." if regenerate else None
        raise ExternalServiceError(
            f"Erreur lors de la génération du lien Wave: {e.message}",
            details=details,
            error_code=e.error_code,
        )

    link = session.get("wave_launch_url") or session.get("checkout_url")
    checkout_id = session.get("id")
    if not link or not checkout_id:
        logger.error("[Wave] Checkout response without link or id: %s", session)
        raise ExternalServiceError("Wave n'a pas renvoyé de lien de paiement")

    # Only attach the link if no other request attached one in the meantime
    updated = db.query(Invoice).filter(
        Invoice.id == invoice.id,
        Invoice.user_id == user_id,
        Invoice.payment_link.is_(None),
        Invoice.status != InvoiceStatus.PAID.value,
    ).update(
        {"payment_link": link, "wave_checkout_id": checkout_id, "updated_at": datetime.utcnow()},
        synchronize_session=False,
    )
    if updated != 1:
        db.rollback()
        logger.warning("[Wave] Invoice %s got a link concurrently; expiring checkout %s", invoice.id, checkout_id)
        try:
            await wave.expire_checkout_session(checkout_id)
        except WaveAPIError as e:
            logger.warning("[Wave] Could not expire orphan checkout %s: %s", checkout_id, e.message)
        db.refresh(invoice)
        raise ConflictError(
            "Un lien de paiement existe déjà pour cette facture",
            paymentLink=invoice.payment_link,
        )

    db.commit()
    db.refresh(invoice)
    logger.info("[Wave] Payment link %s for invoice %s", "regenerated" if regenerate else "issued", invoice.invoice_number)
    return invoice


async def _invalidate_current_link(db: Session, user_id: int, invoice: Invoice, wave: WaveClient) -> None:
    old_checkout_id = invoice.wave_checkout_id
    if old_checkout_id:
        try:
            await wave.expire_checkout_session(old_checkout_id)
        except WaveAPIError as e:
            # 404/409: the session is already gone, completed or expired at Wave
            if e.status_code not in (404, 409):
                raise ExternalServiceError(
                    f"Impossible d'invalider l'ancien lien Wave: {e.message}",
                    error_code=e.error_code,
                )
            logger.info("[Wave] Checkout %s already inactive (%s)", old_checkout_id, e.status_code)

    db.query(Invoice).filter(
        Invoice.id == invoice.id,
        Invoice.user_id == user_id,
    ).update(
        {"payment_link": None, "wave_checkout_id": None, "updated_at": datetime.utcnow()},
        synchronize_session=False,
    )
    db.commit()
    db.refresh(invoice)


def revoke_payment_link(db: Session, user_id: int, invoice_id: int) -> Invoice:
    """Forget the stored link. Revoking an invoice that has none is a no-op."""
    invoice = get_document(db, user_id, invoice_id)
    if invoice.payment_link is None and invoice.wave_checkout_id is None:
        return invoice
    invoice.payment_link = None
    invoice.wave_checkout_id = None
    db.commit()
    db.refresh(invoice)
    return invoice
