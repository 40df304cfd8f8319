"""
Request/response shapes for invoices and proformas.

The web client speaks camelCase (`paidDate`, `generatePaymentLink`), so every
model accepts and emits camelCase aliases while Python code uses snake_case.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

PaymentMethod = Literal["WAVE", "CASH", "BANK_TRANSFER"]


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class InvoiceItemIn(CamelModel):
    name: str
    description: Optional[str] = None
    unit_price: Decimal = Field(ge=0)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit: Optional[str] = None


class InvoiceItemResponse(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    unit_price: Decimal
    quantity: Decimal
    unit: Optional[str] = None
    total_price: Decimal


class InvoiceResponse(CamelModel):
    id: int
    invoice_number: str
    type: str
    status: str
    amount: Decimal
    due_date: Optional[date] = None
    paid_date: Optional[date] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    payment_link: Optional[str] = None
    wave_checkout_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_address: Optional[str] = None
    client_phone: Optional[str] = None
    project_id: Optional[int] = None
    parent_proforma_id: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    items: List[InvoiceItemResponse] = []


class InvoiceCreate(CamelModel):
    type: Literal["INVOICE", "PROFORMA"] = "INVOICE"
    amount: Optional[Decimal] = Field(default=None, ge=0)  # Defaults to the items total
    status: Optional[str] = None
    due_date: Optional[date] = None
    paid_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None
    project_id: Optional[int] = None
    client_name: Optional[str] = None
    client_email: Optional[EmailStr] = None
    client_address: Optional[str] = None
    client_phone: Optional[str] = None
    items: List[InvoiceItemIn] = []
    generate_payment_link: bool = False


class InvoiceUpdate(CamelModel):
    due_date: Optional[date] = None
    notes: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[EmailStr] = None
    client_address: Optional[str] = None
    client_phone: Optional[str] = None


class ProformaUpdate(InvoiceUpdate):
    amount: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("amount")
    @classmethod
    def amount_not_null(cls, value):
        # Omit the field to keep the amount; null cannot be stored
        if value is None:
            raise ValueError("Le montant ne peut pas être vide")
        return value


class ConvertRequest(CamelModel):
    generate_payment_link: bool = False
    payment_method: Optional[PaymentMethod] = None
    mark_as_paid: bool = False
    paid_date: Optional[date] = None


class SelectedService(CamelModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    unit_price: Decimal = Field(ge=0)
    quantity: Decimal = Field(gt=0)
    unit: Optional[str] = None


class ClientInfo(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None


class PartialConvertRequest(ConvertRequest):
    amount: Optional[Decimal] = None
    selected_services: List[SelectedService] = []
    client_info: Optional[ClientInfo] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class PaymentLinkRequest(CamelModel):
    regenerate: bool = False


class MarkPaidRequest(CamelModel):
    payment_method: PaymentMethod = "WAVE"
    paid_date: Optional[date] = None
    notes: Optional[str] = None
    transaction_id: Optional[str] = None


def serialize_invoice(invoice) -> dict:
    return InvoiceResponse.model_validate(invoice).model_dump(by_alias=True, mode="json")
