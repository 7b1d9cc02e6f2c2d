"""
Tests for InvoiceService.

Invoice numbers come from an AsyncMock numbering service; repositories are
the in-memory fakes from conftest.
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import (
    NOW,
    FakeInvoiceRepository,
    FakeOrderRepository,
    RecordingWriter,
    make_invoice,
    make_order,
)
from storefront.schemas.invoices import PaymentProofRequest
from storefront.services.invoices.enums import (
    InvoicePaymentMethod,
    InvoiceStatus,
    InvoiceType,
)
from storefront.services.invoices.service import (
    InvoiceAccessError,
    InvoiceNotFoundError,
    InvoiceService,
    InvoiceServiceError,
    month_bounds,
)
from storefront.services.orders.enums import OrderType


def build(mock_session, orders=(), invoices=(), registry=None):
    numbering = AsyncMock()
    numbering.one_time_invoice_number.return_value = "INV-202603-0042"
    numbering.period_invoice_number.return_value = "PER-202603-M-01-009"
    invoice_repo = FakeInvoiceRepository(invoices)
    service = InvoiceService(
        mock_session,
        registry=registry,
        invoices=invoice_repo,
        orders=FakeOrderRepository(orders),
        numbering=numbering,
    )
    return service, invoice_repo, numbering


def proof(**overrides) -> PaymentProofRequest:
    data = {
        "payment_proof_url": "https://files.example.com/receipt.png",
        "payment_reference": "TX-0091",
        "payment_method": InvoicePaymentMethod.BANK_TRANSFER,
    }
    data.update(overrides)
    return PaymentProofRequest(**data)


# ============================================================================
# Registering orders
# ============================================================================


class TestRegisterOrder:
    @pytest.mark.asyncio
    async def test_one_time_order_gets_own_invoice(self, mock_session) -> None:
        order = make_order(total="45.00")
        service, invoices, _ = build(mock_session, [order])

        invoice = await service.register_order(order, now=NOW)

        assert invoice.invoice_number == "INV-202603-0042"
        assert invoice.invoice_type == InvoiceType.ONE_TIME
        assert invoice.order_ids == [str(order.id)]
        assert invoice.amount == Decimal("45.00")
        assert invoice.payment_method == InvoicePaymentMethod.OFFLINE_PAYMENT
        assert invoices.invoices == [invoice]

    @pytest.mark.asyncio
    async def test_period_order_appends_to_open_invoice(self, mock_session) -> None:
        first = make_order(
            total="30.00",
            order_type=OrderType.PERIOD,
            period_invoice_number="PER-202603-M-01-001",
        )
        second = make_order(
            total="20.00",
            order_type=OrderType.PERIOD,
            period_invoice_number="PER-202603-M-01-001",
            user_id=first.user_id,
        )
        existing = make_invoice([first])
        service, invoices, numbering = build(mock_session, [first, second], [existing])

        invoice = await service.register_order(second, now=NOW)

        assert invoice is existing
        assert invoice.order_ids == [str(first.id), str(second.id)]
        assert invoice.amount == Decimal("50.00")
        assert len(invoice.items) == 2
        assert invoices.saved == [existing.invoice_number]
        numbering.period_invoice_number.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_period_order_is_not_added_twice(self, mock_session) -> None:
        order = make_order(
            total="30.00",
            order_type=OrderType.PERIOD,
            period_invoice_number="PER-202603-M-01-001",
        )
        existing = make_invoice([order])
        service, *_ = build(mock_session, [order], [existing])

        await service.register_order(order, now=NOW)

        assert existing.order_ids == [str(order.id)]
        assert existing.amount == Decimal("30.00")

    @pytest.mark.asyncio
    async def test_first_period_order_opens_monthly_invoice(self, mock_session) -> None:
        order = make_order(total="18.00", order_type=OrderType.PERIOD)
        service, invoices, numbering = build(mock_session, [order])

        invoice = await service.register_order(order, now=NOW)

        assert invoice.invoice_number == "PER-202603-M-01-009"
        assert invoice.invoice_type == InvoiceType.PERIOD
        assert invoice.period_start == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert invoice.period_end.day == 31
        assert invoices.invoices == [invoice]

    def test_month_bounds_handles_february(self) -> None:
        start, end = month_bounds(datetime(2028, 2, 10, 8, tzinfo=timezone.utc))

        assert (start.day, start.hour) == (1, 0)
        assert (end.day, end.hour, end.minute) == (29, 23, 59)

    @pytest.mark.asyncio
    async def test_current_period_invoice_number_is_reused(self, mock_session) -> None:
        order = make_order(order_type=OrderType.PERIOD, period_invoice_number="PER-202603-M-01-001")
        open_invoice = make_invoice([order], invoice_number="PER-202603-M-01-001")
        service, _, numbering = build(mock_session, [order], [open_invoice])

        number = await service.current_period_invoice_number(order.user_id, now=NOW)

        assert number == "PER-202603-M-01-001"
        numbering.period_invoice_number.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_closed_period_invoice_gets_new_number(self, mock_session) -> None:
        order = make_order(order_type=OrderType.PERIOD, period_invoice_number="PER-202603-M-01-001")
        paid = make_invoice([order], status=InvoiceStatus.PAID)
        service, _, numbering = build(mock_session, [order], [paid])

        number = await service.current_period_invoice_number(order.user_id, now=NOW)

        assert number == "PER-202603-M-01-009"
        numbering.period_invoice_number.assert_awaited_once_with(now=NOW)


# ============================================================================
# Status and payment proof
# ============================================================================


class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_paid_stamps_payment_date(self, mock_session, registry) -> None:
        invoice = make_invoice([make_order()])
        writer = RecordingWriter()
        registry.add_client("dashboard", writer)
        service, *_ = build(mock_session, invoices=[invoice], registry=registry)

        await service.update_status(invoice.invoice_number, InvoiceStatus.PAID, now=NOW)

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.payment_date == NOW
        mock_session.commit.assert_awaited_once()
        assert len(writer.frames) == 1

    @pytest.mark.asyncio
    async def test_overdue_leaves_payment_date(self, mock_session) -> None:
        invoice = make_invoice([make_order()])
        service, *_ = build(mock_session, invoices=[invoice])

        await service.update_status(invoice.invoice_number, InvoiceStatus.OVERDUE)

        assert invoice.payment_date is None

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, mock_session) -> None:
        service, *_ = build(mock_session)

        with pytest.raises(InvoiceNotFoundError):
            await service.update_status("INV-000000-0000", InvoiceStatus.PAID)

    @pytest.mark.asyncio
    async def test_commit_failure_rolls_back(self, mock_session) -> None:
        invoice = make_invoice([make_order()])
        mock_session.commit.side_effect = RuntimeError("connection lost")
        service, *_ = build(mock_session, invoices=[invoice])

        with pytest.raises(RuntimeError):
            await service.update_status(invoice.invoice_number, InvoiceStatus.PAID)

        mock_session.rollback.assert_awaited_once()


class TestPaymentProof:
    @pytest.mark.asyncio
    async def test_owner_submits_proof(self, mock_session, customer_user) -> None:
        invoice = make_invoice([make_order(user_id=customer_user.id)])
        service, *_ = build(mock_session, invoices=[invoice])

        await service.submit_payment_proof(invoice.invoice_number, customer_user, proof())

        assert invoice.payment_reference == "TX-0091"
        assert invoice.payment_method == InvoicePaymentMethod.BANK_TRANSFER
        assert invoice.payment_date is not None
        assert invoice.status == InvoiceStatus.PENDING

    @pytest.mark.asyncio
    async def test_other_customer_is_refused(self, mock_session, customer_user) -> None:
        invoice = make_invoice([make_order()])
        service, *_ = build(mock_session, invoices=[invoice])

        with pytest.raises(InvoiceAccessError):
            await service.submit_payment_proof(invoice.invoice_number, customer_user, proof())

        assert invoice.payment_reference is None
        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_admin_may_submit_for_anyone(self, mock_session, admin_user) -> None:
        invoice = make_invoice([make_order()])
        service, *_ = build(mock_session, invoices=[invoice])

        await service.submit_payment_proof(
            invoice.invoice_number, admin_user, proof(payment_date=NOW)
        )

        assert invoice.payment_date == NOW

    @pytest.mark.asyncio
    async def test_cancelled_invoice_is_refused(self, mock_session, customer_user) -> None:
        invoice = make_invoice(
            [make_order(user_id=customer_user.id)], status=InvoiceStatus.CANCELLED
        )
        service, *_ = build(mock_session, invoices=[invoice])

        with pytest.raises(InvoiceServiceError, match="cancelled"):
            await service.submit_payment_proof(invoice.invoice_number, customer_user, proof())
