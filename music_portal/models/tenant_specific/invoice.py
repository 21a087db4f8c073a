# music_portal/models/tenant_specific/invoice.py
import enum

from sqlalchemy import (
    Column, String, Text, Integer, Date, DateTime, Numeric, ForeignKey, Enum, CheckConstraint, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import relationship
from ..base import Base, utcnow


class InvoiceStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PAID = "PAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, enum.Enum):
    STRIPE = "STRIPE"
    BANK_TRANSFER = "BANK_TRANSFER"
    CASH = "CASH"
    CHECK = "CHECK"
    OTHER = "OTHER"


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint('amount_paid >= 0', name='ck_invoice_amount_paid'),
        UniqueConstraint('school_id', 'invoice_number', name='uq_invoice_school_number'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    family_id = Column(Uuid(as_uuid=True), ForeignKey("families.id"), nullable=False, index=True)
    term_id = Column(Uuid(as_uuid=True), ForeignKey("terms.id"), nullable=True, index=True)

    invoice_number = Column(String(30), nullable=False, index=True)
    description = Column(String(500))
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(Enum(InvoiceStatus, name="invoice_status"), default=InvoiceStatus.DRAFT, nullable=False, index=True)
    due_date = Column(Date, nullable=False, index=True)
    notes = Column(Text)
    sent_at = Column(DateTime(timezone=True))
    paid_at = Column(DateTime(timezone=True))

    family = relationship("Family", lazy="joined")
    term = relationship("Term", lazy="joined")
    items = relationship("InvoiceItem", cascade="all, delete-orphan", lazy="selectin", order_by="InvoiceItem.position")
    payments = relationship("Payment", cascade="all, delete-orphan", lazy="selectin", order_by="Payment.paid_at")


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    lesson_id = Column(Uuid(as_uuid=True), ForeignKey("lessons.id"), nullable=True)
    position = Column(Integer, default=0, nullable=False)
    description = Column(String(500), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_payment_amount'),
    )

    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(Enum(PaymentMethod, name="payment_method"), nullable=False)
    reference = Column(String(200))
    stripe_payment_id = Column(String(200), unique=True, nullable=True)
    notes = Column(Text)
    paid_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    recorded_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
