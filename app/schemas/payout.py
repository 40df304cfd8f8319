from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field

from app.schemas.invoice import CamelModel

PayoutType = Literal["provider_payment", "client_refund", "general_payment"]


class PayoutRequest(CamelModel):
    receive_amount: Decimal = Field(gt=0)
    currency: str = "XOF"
    mobile: str = Field(min_length=1)
    name: Optional[str] = None
    national_id: Optional[str] = None
    payment_reason: Optional[str] = Field(default=None, max_length=40)
    client_reference: Optional[str] = Field(default=None, max_length=255)
    type: PayoutType = "provider_payment"
    project_id: Optional[int] = None
