"""
Reversal of succeeded Wave payouts (provider payments).

    processing -> succeeded -> reversed
    processing -> failed

Only a succeeded payout can be reversed, and only within 72 hours of its
creation, checked against the timestamp Wave reports at call time. A
PayoutReversal row claims the payout before the gateway is called so that
double submissions produce one gateway reversal. The claim is dropped again
if Wave refuses, so nothing is booked for a reversal that did not happen.

A claim left pending (worker crash, lost response, failed bookkeeping) is
settled by the next call: if Wave reports the payout reversed, the
compensating entry is booked then; if Wave still reports it succeeded and the
claim has outlived REVERSAL_CLAIM_TIMEOUT, the claim is released and the
reversal is attempted again.
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.billing_rules import (
    EXPENSE_CATEGORY_PROVIDER_PAYMENT,
    EXPENSE_CATEGORY_PROVIDER_PAYMENT_REVERSAL,
    REVERSAL_CLAIM_TIMEOUT,
    parse_gateway_timestamp,
    reversal_window_expired,
)
from app.core.errors import (
    ConflictError,
    ExternalServiceError,
    InvalidStateError,
    NotFoundError,
    WindowExpiredError,
)
from app.models.expense import Expense
from app.models.payout_reversal import PayoutReversal
from app.models.user import User
from app.services.notifications import create_notification
from app.services.wave_client import (
    WaveAPIError,
    WaveClient,
    WaveClientFactory,
    client_for_user,
    describe_reversal_error,
)

logger = logging.getLogger(__name__)


def _already_reversed(payout_id: str) -> Dict[str, Any]:
    return {
        "status": "already_reversed",
        "message": "Paiement déjà annulé",
        "payoutId": payout_id,
    }


def _amount(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        raise ExternalServiceError(f"Montant Wave illisible: {value!r}")


def _refunded(payout: Dict[str, Any]) -> Decimal:
    return _amount(payout.get("receive_amount")) + _amount(payout.get("fee"))


async def _fetch_payout(wave: WaveClient, payout_id: str) -> Dict[str, Any]:
    try:
        return await wave.get_payout(payout_id)
    except WaveAPIError as e:
        if e.status_code == 404:
            raise NotFoundError("Paiement non trouvé")
        raise ExternalServiceError(
            "Impossible de récupérer les détails du paiement",
            details=e.message,
            error_code=e.error_code,
        )


def _claim(db: Session, user_id: int, payout_id: str) -> Optional[PayoutReversal]:
    """Insert the pending claim; returns None when another request holds it."""
    claim = PayoutReversal(user_id=user_id, payout_id=payout_id, status="pending")
    db.add(claim)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return None
    db.refresh(claim)
    return claim


def _claim_is_stale(claim: PayoutReversal) -> bool:
    return claim.created_at is not None and datetime.utcnow() - claim.created_at > REVERSAL_CLAIM_TIMEOUT


def _release_claim(db: Session, claim: PayoutReversal) -> None:
    db.query(PayoutReversal).filter(
        PayoutReversal.id == claim.id,
        PayoutReversal.status == "pending",
    ).delete(synchronize_session=False)
    db.expunge(claim)
    db.commit()


def _book_reversal(
    db: Session,
    user_id: int,
    payout_id: str,
    payout: Dict[str, Any],
    refunded: Decimal,
    reversed_at: datetime,
) -> Expense:
    original = db.query(Expense).filter(
        Expense.user_id == user_id,
        Expense.wave_payout_id == payout_id,
        Expense.category == EXPENSE_CATEGORY_PROVIDER_PAYMENT,
    ).first()

    description = original.description if original else f"Paiement Wave {payout_id}"
    currency = payout.get("currency") or "XOF"
    entry = Expense(
        user_id=user_id,
        project_id=original.project_id if original else None,
        description=f"ANNULATION - {description}",
        amount=-refunded,
        category=EXPENSE_CATEGORY_PROVIDER_PAYMENT_REVERSAL,
        type=original.type if original else "PROVIDER",
        date=date.today(),
        notes=(
            "Annulation du paiement Wave\n"
            f"Paiement original: {payout_id}\n"
            f"Date d'annulation: {reversed_at.isoformat()}\n"
            f"Montant remboursé: {payout.get('receive_amount')} {currency} + {payout.get('fee')} {currency} (frais)"
        ),
        wave_payout_id=payout_id,
        reversal_of_id=original.id if original else None,
    )
    db.add(entry)
    db.flush()
    return entry


def _settle_claim(
    db: Session,
    user_id: int,
    claim: PayoutReversal,
    payout: Dict[str, Any],
    refunded: Decimal,
    reversed_at: datetime,
) -> Optional[Expense]:
    """
    pending -> reversed and the compensating entry, in one transaction.
    Returns None when another request settled the claim first.
    """
    settled = db.query(PayoutReversal).filter(
        PayoutReversal.id == claim.id,
        PayoutReversal.status == "pending",
    ).update(
        {
            "status": "reversed",
            "refunded_amount": refunded,
            "reversed_at": reversed_at.replace(tzinfo=None),
        },
        synchronize_session=False,
    )
    if settled != 1:
        db.rollback()
        return None
    entry = _book_reversal(db, user_id, claim.payout_id, payout, refunded, reversed_at)
    db.query(PayoutReversal).filter(PayoutReversal.id == claim.id).update(
        {"expense_id": entry.id}, synchronize_session=False,
    )
    db.commit()
    db.refresh(claim)
    return entry


def _notify_reversal(db: Session, user_id: int, payout_id: str, refunded: Decimal) -> None:
    create_notification(
        db,
        user_id=user_id,
        title="Paiement prestataire annulé",
        message=f"Le paiement Wave {payout_id} a été annulé ({refunded} remboursés, frais inclus)",
        type="INFO",
        related_type="payout",
        related_id=payout_id,
        metadata={"payoutId": payout_id, "refundedAmount": str(refunded)},
    )


def _finish_pending_claim(
    db: Session,
    user_id: int,
    claim: PayoutReversal,
    payout: Dict[str, Any],
) -> Dict[str, Any]:
    refunded = _refunded(payout)
    entry = _settle_claim(db, user_id, claim, payout, refunded, datetime.now(timezone.utc))
    result = _already_reversed(claim.payout_id)
    if entry is not None:
        logger.info("[Reversal] Booked pending reversal of %s (%s refunded)", claim.payout_id, refunded)
        result["expenseId"] = entry.id
        _notify_reversal(db, user_id, claim.payout_id, refunded)
    return result


async def reverse_payout(
    db: Session,
    user_id: int,
    payout_id: str,
    wave_factory: WaveClientFactory = WaveClient,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    user = db.query(User).filter(User.id == user_id).first()
    wave = client_for_user(user, wave_factory)

    existing = db.query(PayoutReversal).filter(
        PayoutReversal.payout_id == payout_id,
        PayoutReversal.user_id == user_id,
    ).first()
    if existing and existing.status == "reversed":
        return _already_reversed(payout_id)

    payout = await _fetch_payout(wave, payout_id)
    status = payout.get("status")

    if existing:
        if status == "reversed":
            return _finish_pending_claim(db, user_id, existing, payout)
        if status == "succeeded" and _claim_is_stale(existing):
            logger.warning("[Reversal] Releasing abandoned claim on payout %s", payout_id)
            _release_claim(db, existing)
        else:
            raise ConflictError("Une annulation de ce paiement est déjà en cours")

    # A payout reversed elsewhere (Wave dashboard) is reported, not re-reversed
    if status == "reversed":
        return _already_reversed(payout_id)
    if status != "succeeded":
        raise InvalidStateError(
            "Seuls les paiements réussis peuvent être annulés",
            currentStatus=status,
        )

    raw_timestamp = payout.get("timestamp")
    try:
        created_at = parse_gateway_timestamp(raw_timestamp)
    except (AttributeError, TypeError, ValueError):
        raise ExternalServiceError(f"Horodatage du paiement invalide: {raw_timestamp!r}")

    now = now or datetime.now(timezone.utc)
    if reversal_window_expired(created_at, now):
        raise WindowExpiredError(
            "Annulation impossible, délai dépassé",
            details="Les paiements ne peuvent être annulés que dans les 72 heures suivant leur création",
        )

    refunded = _refunded(payout)

    claim = _claim(db, user_id, payout_id)
    if claim is None:
        winner = db.query(PayoutReversal).filter(PayoutReversal.payout_id == payout_id).first()
        if winner and winner.status == "reversed":
            return _already_reversed(payout_id)
        raise ConflictError("Une annulation de ce paiement est déjà en cours")

    try:
        await wave.reverse_payout(payout_id)
    except WaveAPIError as e:
        _release_claim(db, claim)
        message, details = describe_reversal_error(e)
        logger.warning("[Reversal] Wave refused reversal of %s: %s (%s)", payout_id, e.error_code, e.message)
        raise ExternalServiceError(message, details=details, error_code=e.error_code, wave_error=e.payload)
    except Exception:
        # Outcome unknown: the claim stays pending and the next call settles it from Wave's status
        logger.exception("[Reversal] Reversal call for %s ended without an answer", payout_id)
        raise

    reversed_at = datetime.now(timezone.utc)
    response: Dict[str, Any] = {
        "status": "reversed",
        "message": "Paiement annulé avec succès",
        "payoutId": payout_id,
        "reversalDate": reversed_at.isoformat(),
        "refundedAmount": str(refunded),
    }

    try:
        entry = _settle_claim(db, user_id, claim, payout, refunded, reversed_at)
    except SQLAlchemyError:
        # Wave has already reversed the payout; the pending claim is settled on the next call
        db.rollback()
        logger.exception("[Reversal] Payout %s reversed at Wave but local bookkeeping failed", payout_id)
        response["warning"] = "Paiement annulé chez Wave, mais l'écriture comptable n'a pas pu être enregistrée"
        return response
    if entry is None:
        return _already_reversed(payout_id)
    response["expenseId"] = entry.id

    logger.info("[Reversal] Payout %s reversed (%s refunded)", payout_id, refunded)
    _notify_reversal(db, user_id, payout_id, refunded)
    return response
