# music_portal/schemas/invoice_schemas.py
"""Pydantic schemas for invoices, payments and term billing."""
from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.tenant_specific.invoice import PaymentMethod


class InvoiceItemInput(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    quantity: int = Field(default=1, ge=1, le=1000)
    unit_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    lesson_id: Optional[UUID] = Field(default=None)


class InvoiceCreate(BaseModel):
    family_id: UUID
    term_id: Optional[UUID] = Field(default=None)
    description: Optional[str] = Field(default=None, max_length=500)
    due_date: Optional[date] = Field(default=None, description="Defaults to the school's payment terms")
    notes: Optional[str] = Field(default=None, max_length=5000)
    items: List[InvoiceItemInput] = Field(default_factory=list)


class InvoiceUpdate(BaseModel):
    description: Optional[str] = Field(default=None, max_length=500)
    due_date: Optional[date] = Field(default=None)
    notes: Optional[str] = Field(default=None, max_length=5000)
    items: Optional[List[InvoiceItemInput]] = Field(default=None)


class InvoiceCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    method: PaymentMethod
    reference: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=2000)


class CardPaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    stripe_payment_id: str = Field(..., min_length=1, max_length=200)


class TermInvoiceOptions(BaseModel):
    term_id: UUID
    group_rate: Optional[Decimal] = Field(default=None, ge=0)
    individual_rate: Optional[Decimal] = Field(default=None, ge=0)
    standard_lesson_rate: Optional[Decimal] = Field(default=None, ge=0)
    due_date: Optional[date] = Field(default=None)


class TermInvoiceRequest(TermInvoiceOptions):
    family_id: UUID


class BulkInvoiceRequest(TermInvoiceOptions):
    family_ids: Optional[List[UUID]] = Field(default=None, description="Defaults to every family enrolled in the term")
