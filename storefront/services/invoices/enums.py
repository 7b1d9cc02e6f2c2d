"""Invoice enums."""

from enum import Enum


class InvoiceType(str, Enum):
    """One invoice per order, or one invoice accumulating a billing period."""

    ONE_TIME = "one-time"
    PERIOD = "period"


class InvoiceStatus(str, Enum):
    """Invoice payment status."""

    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class InvoicePaymentMethod(str, Enum):
    """Payment methods recorded against an invoice."""

    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    OFFLINE_PAYMENT = "offline_payment"


class PeriodType(str, Enum):
    """Billing period granularity of period invoices."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
