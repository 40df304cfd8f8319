"""
Outgoing Wave payouts (provider payments, client refunds).

Each payout is booked as an expense carrying `wave_payout_id`; a later
reversal finds that entry and links its compensating entry to it.
"""
import logging
import uuid
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.billing_rules import EXPENSE_CATEGORY_PROVIDER_PAYMENT, format_wave_amount
from app.core.errors import ExternalServiceError, NotFoundError
from app.models.expense import Expense
from app.models.project import Project
from app.models.user import User
from app.services.notifications import create_notification
from app.services.wave_client import WaveAPIError, WaveClient, WaveClientFactory, client_for_user

logger = logging.getLogger(__name__)

EXPENSE_CATEGORIES = {
    "provider_payment": EXPENSE_CATEGORY_PROVIDER_PAYMENT,
    "client_refund": "CLIENT_REFUND",
    "general_payment": "WAVE_PAYMENT",
}


def _fee(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


async def send_payout(
    db: Session,
    user_id: int,
    request,
    wave_factory: WaveClientFactory = WaveClient,
) -> Dict[str, Any]:
    user = db.query(User).filter(User.id == user_id).first()
    wave = client_for_user(user, wave_factory)

    if request.project_id is not None:
        project = db.query(Project).filter(
            Project.id == request.project_id,
            Project.user_id == user_id,
        ).first()
        if not project:
            raise NotFoundError("Projet non trouvé")

    currency = request.currency.upper()
    payload: Dict[str, Any] = {
        "currency": currency,
        "receive_amount": format_wave_amount(request.receive_amount, currency),
        "mobile": request.mobile,
    }
    for field in ("name", "national_id", "payment_reason", "client_reference"):
        value = getattr(request, field)
        if value:
            payload[field] = value

    try:
        payout = await wave.create_payout(payload, idempotency_key=str(uuid.uuid4()))
    except WaveAPIError as e:
        logger.warning("[Payout] Wave refused payout to %s: %s (%s)", request.mobile, e.error_code, e.message)
        create_notification(
            db,
            user_id=user_id,
            title="Échec d'envoi de paiement",
            message=f"Échec de l'envoi de {request.receive_amount} {currency} vers {request.mobile}",
            type="WAVE_PAYMENT_FAILED",
            metadata={"amount": str(request.receive_amount), "currency": currency, "recipient": request.mobile},
        )
        raise ExternalServiceError(
            "Erreur lors de l'envoi du paiement",
            details=e.message,
            error_code=e.error_code,
            wave_error=e.payload,
        )

    payout_id = payout.get("id")
    status = payout.get("status")
    fee = _fee(payout.get("fee"))
    succeeded = status == "succeeded"
    response: Dict[str, Any] = {
        "status": status,
        "payoutId": payout_id,
        "transaction": payout,
        "message": "Paiement envoyé avec succès" if succeeded else "Paiement en cours de traitement",
    }

    description = request.payment_reason or f"Paiement Wave vers {request.name or request.mobile}"
    try:
        expense = Expense(
            user_id=user_id,
            project_id=request.project_id,
            description=description,
            amount=request.receive_amount + fee,
            category=EXPENSE_CATEGORIES[request.type],
            type="PROJECT" if request.project_id else "PROVIDER",
            date=date.today(),
            notes=f"Paiement Wave {payout_id}: {request.receive_amount} {currency} + {fee} {currency} (frais)",
            wave_payout_id=payout_id,
        )
        db.add(expense)
        db.commit()
        db.refresh(expense)
        response["expenseId"] = expense.id
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[Payout] Payout %s sent but its expense could not be recorded", payout_id)
        response["warning"] = "Paiement envoyé chez Wave, mais l'écriture comptable n'a pas pu être enregistrée"
        return response

    logger.info("[Payout] Payout %s to %s (%s %s, %s)", payout_id, request.mobile, request.receive_amount, currency, status)
    create_notification(
        db,
        user_id=user_id,
        title="Paiement Wave envoyé" if succeeded else "Paiement Wave en cours",
        message=(
            f"{request.receive_amount} {currency} "
            f"{'envoyé vers' if succeeded else 'en cours vers'} {request.name or request.mobile}"
        ),
        type="SUCCESS" if succeeded else "INFO",
        related_type="payout",
        related_id=payout_id,
        metadata={"payoutId": payout_id, "amount": str(request.receive_amount), "status": status},
    )
    return response
