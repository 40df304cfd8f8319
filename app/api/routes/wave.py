"""
Wave business account actions on provider payouts.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.dependencies.auth import get_current_user_id
from app.dependencies.wave import get_wave_client_factory
from app.schemas.payout import PayoutRequest
from app.services.payout_reversal import reverse_payout
from app.services.payouts import send_payout
from app.services.wave_client import WaveClientFactory

router = APIRouter()


@router.post("/payout")
async def create_wave_payout(
    body: PayoutRequest,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    wave_factory: WaveClientFactory = Depends(get_wave_client_factory),
):
    """Send money to a mobile number and book the matching expense."""
    return await send_payout(db, user_id, body, wave_factory=wave_factory)


@router.post("/payout/{payout_id}/reverse")
async def reverse_wave_payout(
    payout_id: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    wave_factory: WaveClientFactory = Depends(get_wave_client_factory),
):
    """
    Reverse a succeeded payout within 72 hours of its creation.
    A payout that is already reversed answers 200 with status "already_reversed".
    """
    return await reverse_payout(db, user_id, payout_id, wave_factory=wave_factory)
