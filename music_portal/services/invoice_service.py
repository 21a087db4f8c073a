# music_portal/services/invoice_service.py
"""Family invoices, payments and term billing."""
import logging
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import ConflictError, NotFoundError, PortalException, ValidationException
from ..models.tenant_specific.family import Family
from ..models.tenant_specific.invoice import Invoice, InvoiceItem, InvoiceStatus, Payment, PaymentMethod
from ..models.tenant_specific.lesson import Lesson, LessonEnrollment
from ..models.tenant_specific.school_config import Term
from ..models.tenant_specific.student import Student
from ..utils.scheduling import utcnow
from .base_service import BaseService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
# Payments within a cent of the balance settle the invoice
TOLERANCE = Decimal("0.01")

BASE_LESSON_RATES = {
    "INDIVIDUAL": Decimal("50"),
    "GROUP": Decimal("30"),
    "BAND": Decimal("25"),
    "HYBRID": Decimal("35"),
}
DEFAULT_LESSON_RATE = Decimal("35")
OUTSTANDING_STATUSES = (InvoiceStatus.SENT, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.OVERDUE)


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def default_lesson_rate(lesson_type: str, duration_mins: int) -> Decimal:
    """Per-lesson rate; base rates are for 45 minute lessons"""
    base = BASE_LESSON_RATES.get(lesson_type, DEFAULT_LESSON_RATE)
    return money(base * Decimal(duration_mins) / Decimal(45))


def format_invoice_number(year: int, sequence: int) -> str:
    return f"INV-{year}-{sequence:05d}"


def hybrid_line_items(
    label: str,
    group_weeks: int,
    individual_weeks: int,
    group_rate: Decimal,
    individual_rate: Decimal,
    lesson_id: Optional[UUID] = None,
) -> List[Dict[str, Any]]:
    items = []
    if group_weeks:
        items.append({
            "description": f"{label} Group Sessions ({group_weeks} weeks)",
            "quantity": group_weeks,
            "unit_price": money(group_rate),
            "lesson_id": lesson_id,
        })
    if individual_weeks:
        items.append({
            "description": f"{label} Individual Sessions ({individual_weeks} weeks)",
            "quantity": individual_weeks,
            "unit_price": money(individual_rate),
            "lesson_id": lesson_id,
        })
    return items


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    return {
        "id": str(payment.id),
        "amount": float(payment.amount),
        "method": payment.method.value,
        "reference": payment.reference,
        "stripe_payment_id": payment.stripe_payment_id,
        "notes": payment.notes,
        "paid_at": payment.paid_at.isoformat() if payment.paid_at else None,
    }


def serialize_invoice(invoice: Invoice) -> Dict[str, Any]:
    total = Decimal(invoice.total or 0)
    paid = Decimal(invoice.amount_paid or 0)
    return {
        "id": str(invoice.id),
        "invoice_number": invoice.invoice_number,
        "family_id": str(invoice.family_id),
        "family_name": invoice.family.name if invoice.family else None,
        "term_id": str(invoice.term_id) if invoice.term_id else None,
        "term_name": invoice.term.name if invoice.term else None,
        "description": invoice.description,
        "subtotal": float(invoice.subtotal or 0),
        "tax": float(invoice.tax or 0),
        "total": float(total),
        "amount_paid": float(paid),
        "balance": float(max(total - paid, Decimal("0"))),
        "status": invoice.status.value,
        "due_date": invoice.due_date.isoformat(),
        "notes": invoice.notes,
        "sent_at": invoice.sent_at.isoformat() if invoice.sent_at else None,
        "paid_at": invoice.paid_at.isoformat() if invoice.paid_at else None,
        "items": [
            {
                "id": str(item.id),
                "description": item.description,
                "quantity": item.quantity,
                "unit_price": float(item.unit_price),
                "total": float(item.total),
                "lesson_id": str(item.lesson_id) if item.lesson_id else None,
            }
            for item in invoice.items
        ],
        "payments": [serialize_payment(payment) for payment in invoice.payments],
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
    }


class InvoiceService(BaseService[Invoice]):
    resource_name = "Invoice"

    def __init__(self, db: AsyncSession, school_id: Optional[UUID]):
        super().__init__(Invoice, db, school_id)

    async def next_invoice_number(self, year: Optional[int] = None) -> str:
        year = year or date.today().year
        prefix = f"INV-{year}-"
        last = (await self.db.execute(
            select(Invoice.invoice_number)
            .where(Invoice.school_id == self.school_id, Invoice.invoice_number.like(f"{prefix}%"))
            .order_by(Invoice.invoice_number.desc())
            .limit(1)
        )).scalar()
        sequence = 1
        if last:
            try:
                sequence = int(last[len(prefix):]) + 1
            except ValueError:
                logger.warning(f"Unparseable invoice number {last} in school {self.school_id}")
        return format_invoice_number(year, sequence)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_invoices(
        self,
        page: int = 1,
        size: int = 20,
        family_id: Optional[UUID] = None,
        term_id: Optional[UUID] = None,
        status: Optional[InvoiceStatus] = None,
        due_from: Optional[date] = None,
        due_to: Optional[date] = None,
        exclude_drafts: bool = False,
    ) -> Dict[str, Any]:
        stmt = self._scoped(select(Invoice))
        if family_id:
            stmt = stmt.where(Invoice.family_id == family_id)
        if term_id:
            stmt = stmt.where(Invoice.term_id == term_id)
        if status:
            stmt = stmt.where(Invoice.status == status)
        if due_from:
            stmt = stmt.where(Invoice.due_date >= due_from)
        if due_to:
            stmt = stmt.where(Invoice.due_date <= due_to)
        if exclude_drafts:
            stmt = stmt.where(Invoice.status != InvoiceStatus.DRAFT)

        total = (await self.db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
        stmt = stmt.order_by(Invoice.created_at.desc()).offset((page - 1) * size).limit(size)
        invoices = (await self.db.execute(stmt)).unique().scalars().all()
        return {
            "items": [serialize_invoice(invoice) for invoice in invoices],
            "total": total,
            "page": page,
            "size": size,
            "total_pages": (total + size - 1) // size,
            "has_next": page * size < total,
            "has_previous": page > 1,
        }

    async def family_invoices(self, family_id: UUID) -> List[Invoice]:
        """Invoices a parent may see: everything but drafts"""
        stmt = self._scoped(select(Invoice)).where(
            Invoice.family_id == family_id, Invoice.status != InvoiceStatus.DRAFT
        ).order_by(Invoice.created_at.desc())
        return (await self.db.execute(stmt)).unique().scalars().all()

    # ------------------------------------------------------------------
    # Draft lifecycle
    # ------------------------------------------------------------------

    async def _get_family(self, family_id: UUID) -> Family:
        family = (await self.db.execute(
            select(Family).where(
                Family.id == family_id, Family.school_id == self.school_id, Family.is_deleted == False  # noqa: E712
            )
        )).scalar_one_or_none()
        if not family:
            raise NotFoundError("Family")
        return family

    async def _get_term(self, term_id: UUID) -> Term:
        term = (await self.db.execute(
            select(Term).where(Term.id == term_id, Term.school_id == self.school_id)
        )).scalar_one_or_none()
        if not term:
            raise NotFoundError("Term")
        return term

    @staticmethod
    def _build_items(items: List[Dict[str, Any]]) -> List[InvoiceItem]:
        if not items:
            raise ValidationException("An invoice needs at least one line item.")
        built = []
        for position, item in enumerate(items):
            quantity = int(item.get("quantity") or 1)
            unit_price = money(item["unit_price"])
            built.append(InvoiceItem(
                position=position,
                description=item["description"],
                quantity=quantity,
                unit_price=unit_price,
                total=money(unit_price * quantity),
                lesson_id=item.get("lesson_id"),
            ))
        return built

    def _set_totals(self, invoice: Invoice, items: List[InvoiceItem]):
        subtotal = sum((item.total for item in items), Decimal("0"))
        invoice.subtotal = money(subtotal)
        invoice.tax = Decimal("0.00")
        invoice.total = money(subtotal)

    async def create_invoice(self, data: Dict[str, Any]) -> Invoice:
        await self._get_family(data["family_id"])
        if data.get("term_id"):
            await self._get_term(data["term_id"])

        items = self._build_items(data.get("items") or [])
        invoice = Invoice(
            school_id=self.school_id,
            family_id=data["family_id"],
            term_id=data.get("term_id"),
            invoice_number=await self.next_invoice_number(),
            description=data.get("description"),
            due_date=data.get("due_date") or date.today() + timedelta(days=settings.invoice_due_days),
            notes=data.get("notes"),
            status=InvoiceStatus.DRAFT,
            amount_paid=Decimal("0.00"),
            items=items,
        )
        self._set_totals(invoice, items)
        self.db.add(invoice)
        await self.commit_or_conflict("Invoice number already in use. Please retry.")
        logger.info(f"Created invoice {invoice.invoice_number} for family {invoice.family_id}")
        return await self.get(invoice.id)

    async def update_invoice(self, invoice_id: UUID, data: Dict[str, Any]) -> Invoice:
        invoice = await self.get_or_404(invoice_id)
        if invoice.status != InvoiceStatus.DRAFT:
            raise ValidationException("Can only update draft invoices")

        for key in ("description", "notes", "due_date"):
            if key in data and (data[key] is not None or key != "due_date"):
                setattr(invoice, key, data[key])
        if data.get("items") is not None:
            items = self._build_items(data["items"])
            invoice.items = items
            self._set_totals(invoice, items)

        await self.db.commit()
        return await self.get(invoice_id)

    async def delete_invoice(self, invoice_id: UUID) -> None:
        invoice = await self.get_or_404(invoice_id)
        if invoice.status != InvoiceStatus.DRAFT:
            raise ValidationException("Can only delete draft invoices")
        if invoice.payments:
            raise ValidationException("Cannot delete invoice with payments")
        await self.db.delete(invoice)
        await self.db.commit()
        logger.info(f"Deleted draft invoice {invoice.invoice_number}")

    async def send_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = await self.get_or_404(invoice_id)
        if invoice.status != InvoiceStatus.DRAFT:
            raise ValidationException("Invoice has already been sent")
        invoice.status = InvoiceStatus.SENT
        invoice.sent_at = utcnow()
        await self.db.commit()
        recipients = [parent.user.email for parent in invoice.family.parents] if invoice.family else []
        logger.info(f"Invoice {invoice.invoice_number} sent to {', '.join(recipients) or 'no recipients'}")
        return await self.get(invoice_id)

    async def cancel_invoice(self, invoice_id: UUID, reason: Optional[str] = None) -> Invoice:
        invoice = await self.get_or_404(invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED:
            raise ValidationException("Invoice is already cancelled")
        if invoice.status == InvoiceStatus.PAID:
            raise ValidationException("Cannot cancel a paid invoice")
        if invoice.payments and Decimal(invoice.amount_paid or 0) > 0:
            raise ValidationException("Cannot cancel invoice with payments. Issue refunds first.")

        invoice.status = InvoiceStatus.CANCELLED
        if reason:
            invoice.notes = f"{invoice.notes or ''}\n\nCancellation reason: {reason}".strip()
        await self.db.commit()
        logger.info(f"Cancelled invoice {invoice.invoice_number}")
        return await self.get(invoice_id)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def _apply_payment(self, invoice: Invoice, amount: Decimal):
        paid = money(Decimal(invoice.amount_paid or 0) + amount)
        invoice.amount_paid = paid
        if paid >= Decimal(invoice.total) - TOLERANCE:
            invoice.status = InvoiceStatus.PAID
            invoice.paid_at = utcnow()
        else:
            invoice.status = InvoiceStatus.PARTIALLY_PAID
            invoice.paid_at = None

    def _check_payable(self, invoice: Invoice, amount: Decimal):
        if invoice.status in (InvoiceStatus.CANCELLED, InvoiceStatus.REFUNDED):
            raise ValidationException("Cannot add payments to cancelled or refunded invoices")
        if amount <= 0:
            raise ValidationException("Payment amount must be positive")
        remaining = Decimal(invoice.total) - Decimal(invoice.amount_paid or 0)
        if amount > remaining + TOLERANCE:
            raise ValidationException(
                f"Payment amount (${amount:.2f}) exceeds remaining balance (${remaining:.2f})"
            )

    async def record_payment(self, invoice_id: UUID, data: Dict[str, Any], recorded_by_id: Optional[UUID] = None) -> Invoice:
        invoice = await self.get_or_404(invoice_id)
        amount = money(data["amount"])
        self._check_payable(invoice, amount)

        self.db.add(Payment(
            invoice_id=invoice.id,
            amount=amount,
            method=PaymentMethod(data["method"]),
            reference=data.get("reference"),
            notes=data.get("notes"),
            paid_at=utcnow(),
            recorded_by_id=recorded_by_id,
        ))
        self._apply_payment(invoice, amount)
        await self.db.commit()
        logger.info(f"Recorded {data['method']} payment of {amount} on invoice {invoice.invoice_number}")
        return await self.get(invoice_id)

    async def record_card_payment(self, invoice_id: UUID, amount, stripe_payment_id: str) -> Payment:
        """Record a card payment confirmed by the payment provider; repeated notifications are ignored"""
        invoice = await self.get_or_404(invoice_id)
        existing = (await self.db.execute(
            select(Payment).where(
                Payment.invoice_id == invoice.id,
                Payment.stripe_payment_id == stripe_payment_id,
            )
        )).scalar_one_or_none()
        if existing:
            logger.info(f"Card payment {stripe_payment_id} already recorded")
            return existing

        amount = money(amount)
        self._check_payable(invoice, amount)
        payment = Payment(
            invoice_id=invoice.id,
            amount=amount,
            method=PaymentMethod.STRIPE,
            stripe_payment_id=stripe_payment_id,
            paid_at=utcnow(),
        )
        self.db.add(payment)
        self._apply_payment(invoice, amount)
        await self.commit_or_conflict("Payment already recorded.")
        logger.info(f"Recorded card payment {stripe_payment_id} on invoice {invoice.invoice_number}")
        return payment

    # ------------------------------------------------------------------
    # Term billing
    # ------------------------------------------------------------------

    async def hybrid_billing(
        self,
        lesson_id: UUID,
        student_id: Optional[UUID] = None,
        group_rate: Optional[Decimal] = None,
        individual_rate: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        lesson = (await self.db.execute(
            select(Lesson).where(Lesson.id == lesson_id, Lesson.school_id == self.school_id)
        )).unique().scalar_one_or_none()
        if not lesson:
            raise NotFoundError("Lesson")
        pattern = lesson.hybrid_pattern
        if pattern is None:
            raise ValidationException("Lesson is not a hybrid lesson")

        label = lesson.name
        if student_id:
            student = (await self.db.execute(
                select(Student).where(Student.id == student_id, Student.school_id == self.school_id)
            )).scalar_one_or_none()
            if not student:
                raise NotFoundError("Student")
            label = f"{student.full_name} - {lesson.name}"

        group_rate = money(group_rate if group_rate is not None else settings.hybrid_group_rate)
        individual_rate = money(individual_rate if individual_rate is not None else settings.hybrid_individual_rate)
        group_weeks = len(pattern.group_weeks or [])
        individual_weeks = len(pattern.individual_weeks or [])
        group_price = money(group_rate * group_weeks)
        individual_price = money(individual_rate * individual_weeks)
        return {
            "group_weeks_count": group_weeks,
            "individual_weeks_count": individual_weeks,
            "group_weeks_price": group_price,
            "individual_weeks_price": individual_price,
            "total_price": group_price + individual_price,
            "line_items": hybrid_line_items(label, group_weeks, individual_weeks, group_rate, individual_rate, lesson.id),
        }

    async def generate_term_invoice(self, family_id: UUID, options: Dict[str, Any]) -> Invoice:
        term = await self._get_term(options["term_id"])
        family = await self._get_family(family_id)

        existing = (await self.db.execute(
            self._scoped(select(Invoice.invoice_number)).where(
                Invoice.family_id == family_id,
                Invoice.term_id == term.id,
                Invoice.status != InvoiceStatus.CANCELLED,
            )
        )).scalar()
        if existing:
            raise ConflictError(f"Invoice already exists for {family.name} for this term ({existing})")

        enrollments = (await self.db.execute(
            select(LessonEnrollment)
            .join(Student, Student.id == LessonEnrollment.student_id)
            .join(Lesson, Lesson.id == LessonEnrollment.lesson_id)
            .where(
                Student.family_id == family_id,
                Student.is_deleted == False,  # noqa: E712
                LessonEnrollment.is_active == True,  # noqa: E712
                Lesson.school_id == self.school_id,
                Lesson.term_id == term.id,
                Lesson.is_deleted == False,  # noqa: E712
            )
            .order_by(Student.first_name, Lesson.name)
        )).unique().scalars().all()
        if not enrollments:
            raise ValidationException("No active enrollments found for this family and term")

        term_weeks = settings.default_term_weeks
        items = []
        for enrollment in enrollments:
            lesson = (await self.db.execute(select(Lesson).where(Lesson.id == enrollment.lesson_id))).unique().scalar_one()
            if lesson.hybrid_pattern is not None:
                billing = await self.hybrid_billing(
                    lesson.id, enrollment.student_id, options.get("group_rate"), options.get("individual_rate")
                )
                items.extend(billing["line_items"])
            else:
                rate = options.get("standard_lesson_rate")
                rate = money(rate) if rate is not None else default_lesson_rate(
                    lesson.lesson_type.type.value, lesson.duration_mins
                )
                items.append({
                    "description": f"{enrollment.student.full_name} - {lesson.name} ({term_weeks} weeks)",
                    "quantity": term_weeks,
                    "unit_price": rate,
                    "lesson_id": lesson.id,
                })

        return await self.create_invoice({
            "family_id": family_id,
            "term_id": term.id,
            "description": f"{term.name} - {family.name}",
            "due_date": options.get("due_date"),
            "items": items,
        })

    async def generate_bulk(self, options: Dict[str, Any]) -> Dict[str, Any]:
        term = await self._get_term(options["term_id"])
        family_ids = options.get("family_ids")
        if not family_ids:
            family_ids = (await self.db.execute(
                select(Student.family_id)
                .join(LessonEnrollment, LessonEnrollment.student_id == Student.id)
                .join(Lesson, Lesson.id == LessonEnrollment.lesson_id)
                .where(
                    Student.family_id.is_not(None),
                    LessonEnrollment.is_active == True,  # noqa: E712
                    Lesson.school_id == self.school_id,
                    Lesson.term_id == term.id,
                )
                .distinct()
            )).scalars().all()

        term_name = term.name
        created_ids, errors = [], []
        for family_id in family_ids:
            try:
                created_ids.append((await self.generate_term_invoice(family_id, options)).id)
            except PortalException as e:
                # Rollback expires loaded rows; created invoices are reloaded below
                await self.db.rollback()
                errors.append({"family_id": str(family_id), "error": e.message})
        created = [await self.get(invoice_id) for invoice_id in created_ids]
        logger.info(f"Bulk invoicing for term {term_name}: {len(created)} created, {len(errors)} failed")
        return {"created": created, "errors": errors}

    async def mark_overdue(self, today: Optional[date] = None) -> int:
        """SENT invoices past their due date become OVERDUE; school_id None covers every school"""
        stmt = update(Invoice).where(
            Invoice.status == InvoiceStatus.SENT,
            Invoice.due_date < (today or date.today()),
        )
        if self.school_id is not None:
            stmt = stmt.where(Invoice.school_id == self.school_id)
        result = await self.db.execute(stmt.values(status=InvoiceStatus.OVERDUE))
        await self.db.commit()
        if result.rowcount:
            logger.info(f"Marked {result.rowcount} invoices overdue")
        return result.rowcount or 0

    async def statistics(self) -> Dict[str, Any]:
        rows = (await self.db.execute(
            self._scoped(select(Invoice.status, func.count(), func.sum(Invoice.total), func.sum(Invoice.amount_paid)))
            .group_by(Invoice.status)
        )).all()
        by_status = {status.value: 0 for status in InvoiceStatus}
        total_invoiced = total_paid = outstanding = overdue = Decimal("0")
        for status, count, total, paid in rows:
            total = Decimal(total or 0)
            paid = Decimal(paid or 0)
            by_status[status.value] = count
            total_paid += paid
            if status not in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED):
                total_invoiced += total
            if status in OUTSTANDING_STATUSES:
                outstanding += total - paid
            if status == InvoiceStatus.OVERDUE:
                overdue += total - paid

        recent = (await self.db.execute(
            select(Payment).join(Invoice, Invoice.id == Payment.invoice_id)
            .where(Invoice.school_id == self.school_id)
            .order_by(Payment.paid_at.desc()).limit(10)
        )).scalars().all()
        return {
            "invoices_by_status": by_status,
            "total_invoiced": float(money(total_invoiced)),
            "total_paid": float(money(total_paid)),
            "total_outstanding": float(money(outstanding)),
            "total_overdue": float(money(overdue)),
            "recent_payments": [serialize_payment(payment) for payment in recent],
        }
