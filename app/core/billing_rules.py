from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional

# Wave only lets a business reverse a succeeded payout for 72 hours
REVERSAL_WINDOW = timedelta(hours=72)
# A pending reversal claim older than this is considered abandoned
REVERSAL_CLAIM_TIMEOUT = timedelta(minutes=10)

INVOICE_NUMBER_PREFIXES: Dict[str, str] = {
    "INVOICE": "INV",
    "PROFORMA": "PRO",
}
INVOICE_NUMBER_DIGITS = 3

PAYMENT_METHODS = ("WAVE", "CASH", "BANK_TRANSFER")

EXPENSE_CATEGORY_PROVIDER_PAYMENT = "PROVIDER_PAYMENT"
EXPENSE_CATEGORY_PROVIDER_PAYMENT_REVERSAL = "PROVIDER_PAYMENT_REVERSAL"
EXPENSE_CATEGORY_PAYMENT_RECEIVED = "PAYMENT_RECEIVED"

# Local currency labels -> ISO codes accepted by Wave
WAVE_CURRENCIES: Dict[str, str] = {
    "FCFA": "XOF",
    "XOF": "XOF",
    "EUR": "EUR",
    "USD": "USD",
}


def wave_currency(currency: Optional[str]) -> str:
    return WAVE_CURRENCIES.get((currency or "").upper(), "XOF")


def format_wave_amount(amount: Decimal, currency: str = "XOF") -> str:
    """XOF has no minor unit, so Wave expects a whole number string."""
    if currency == "XOF":
        return str(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return str(Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def parse_gateway_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp from Wave into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def reversal_window_expired(payout_timestamp: datetime, now: datetime) -> bool:
    """True once strictly more than 72h have elapsed since the payout was created."""
    return now - payout_timestamp > REVERSAL_WINDOW
