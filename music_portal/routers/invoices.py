# music_portal/routers/invoices.py
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, get_current_user, require_admin
from ..core.database import get_db
from ..core.exceptions import NotFoundError
from ..models.tenant_specific.family import Parent
from ..models.tenant_specific.invoice import InvoiceStatus
from ..schemas.invoice_schemas import (
    BulkInvoiceRequest, CardPaymentCreate, InvoiceCancel, InvoiceCreate, InvoiceUpdate, PaymentCreate,
    TermInvoiceRequest,
)
from ..services.invoice_service import InvoiceService, serialize_invoice, serialize_payment
from ..services.parent_service import ParentService
from .deps import get_parent_profile

router = APIRouter(prefix="/api/v1/invoices", tags=["Invoices"])


@router.get("/", response_model=dict)
async def list_invoices(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    family_id: Optional[UUID] = Query(None),
    term_id: Optional[UUID] = Query(None),
    status: Optional[InvoiceStatus] = Query(None),
    due_from: Optional[date] = Query(None),
    due_to: Optional[date] = Query(None),
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await InvoiceService(db, current.school_id).list_invoices(
        page, size, family_id, term_id, status, due_from, due_to
    )


@router.get("/my-family", response_model=list)
async def my_family_invoices(parent: Parent = Depends(get_parent_profile), db: AsyncSession = Depends(get_db)):
    """Invoices for the caller's family, drafts excluded"""
    if not parent.family_id:
        return []
    invoices = await InvoiceService(db, parent.school_id).family_invoices(parent.family_id)
    return [serialize_invoice(invoice) for invoice in invoices]


@router.get("/statistics", response_model=dict)
async def invoice_statistics(current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return await InvoiceService(db, current.school_id).statistics()


@router.get("/hybrid-billing/{lesson_id}", response_model=dict)
async def hybrid_billing(
    lesson_id: UUID,
    student_id: Optional[UUID] = Query(None),
    group_rate: Optional[Decimal] = Query(None, ge=0),
    individual_rate: Optional[Decimal] = Query(None, ge=0),
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Price breakdown of a hybrid lesson: group weeks and individual weeks at their own rates"""
    billing = await InvoiceService(db, current.school_id).hybrid_billing(lesson_id, student_id, group_rate, individual_rate)
    for key in ("group_weeks_price", "individual_weeks_price", "total_price"):
        billing[key] = float(billing[key])
    billing["line_items"] = [
        {**item, "unit_price": float(item["unit_price"]), "lesson_id": str(item["lesson_id"]) if item.get("lesson_id") else None}
        for item in billing["line_items"]
    ]
    return billing


@router.post("/generate", response_model=dict, status_code=status.HTTP_201_CREATED)
async def generate_term_invoice(
    payload: TermInvoiceRequest,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Draft a family's term invoice from its active enrollments"""
    options = payload.model_dump()
    family_id = options.pop("family_id")
    invoice = await InvoiceService(db, current.school_id).generate_term_invoice(family_id, options)
    return serialize_invoice(invoice)


@router.post("/generate/bulk", response_model=dict)
async def generate_bulk_invoices(
    payload: BulkInvoiceRequest,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await InvoiceService(db, current.school_id).generate_bulk(payload.model_dump())
    return {
        "created": [serialize_invoice(invoice) for invoice in result["created"]],
        "errors": result["errors"],
    }


@router.post("/mark-overdue", response_model=dict)
async def mark_overdue(current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return {"updated": await InvoiceService(db, current.school_id).mark_overdue()}


@router.get("/{invoice_id}", response_model=dict)
async def get_invoice(invoice_id: UUID, current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    """Admins see any invoice; parents only their family's sent invoices"""
    invoice = await InvoiceService(db, current.school_id).get_or_404(invoice_id)
    if not current.is_admin:
        parent = await ParentService(db, current.school_id).get_by_user_id(current.id) if current.is_parent else None
        if not parent or invoice.family_id != parent.family_id or invoice.status == InvoiceStatus.DRAFT:
            raise NotFoundError("Invoice")
    return serialize_invoice(invoice)


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    payload: InvoiceCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return serialize_invoice(await InvoiceService(db, current.school_id).create_invoice(payload.model_dump()))


@router.put("/{invoice_id}", response_model=dict)
async def update_invoice(
    invoice_id: UUID,
    payload: InvoiceUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    invoice = await InvoiceService(db, current.school_id).update_invoice(invoice_id, payload.model_dump(exclude_unset=True))
    return serialize_invoice(invoice)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(invoice_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    """Only drafts without payments can be deleted"""
    await InvoiceService(db, current.school_id).delete_invoice(invoice_id)


@router.post("/{invoice_id}/send", response_model=dict)
async def send_invoice(invoice_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return serialize_invoice(await InvoiceService(db, current.school_id).send_invoice(invoice_id))


@router.post("/{invoice_id}/cancel", response_model=dict)
async def cancel_invoice(
    invoice_id: UUID,
    payload: InvoiceCancel,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return serialize_invoice(await InvoiceService(db, current.school_id).cancel_invoice(invoice_id, payload.reason))


@router.post("/{invoice_id}/payments", response_model=dict, status_code=status.HTTP_201_CREATED)
async def record_payment(
    invoice_id: UUID,
    payload: PaymentCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Record a manual payment; the invoice becomes PAID once the balance is settled"""
    invoice = await InvoiceService(db, current.school_id).record_payment(invoice_id, payload.model_dump(), current.id)
    return serialize_invoice(invoice)


@router.post("/{invoice_id}/payments/card", response_model=dict)
async def record_card_payment(
    invoice_id: UUID,
    payload: CardPaymentCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    payment = await InvoiceService(db, current.school_id).record_card_payment(
        invoice_id, payload.amount, payload.stripe_payment_id
    )
    return serialize_payment(payment)
