"""
Tests for ReconciliationService.

Covers detaching a deleted order from its invoices, the empty period invoice
sweep, forced repair of invoices pointing at missing orders, amount sync,
and the retry on concurrent invoice updates.
"""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.orm.exc import StaleDataError

from conftest import (
    FakeInvoiceRepository,
    FakeOrderRepository,
    RecordingWriter,
    make_invoice,
    make_order,
    make_product,
    parse_frames,
)
from storefront.services.invoices.enums import InvoiceStatus, InvoiceType
from storefront.services.invoices.reconciliation import (
    InvoiceConflictError,
    ReconciliationError,
    ReconciliationService,
)
from storefront.services.orders.enums import OrderStatus, OrderType


def period_order(total: str, **kwargs):
    return make_order(
        total=total,
        order_type=OrderType.PERIOD,
        period_invoice_number="PER-202603-M-01-001",
        **kwargs,
    )


def build(mock_session, orders=(), invoices=(), registry=None, max_attempts=3):
    order_repo = FakeOrderRepository(orders)
    invoice_repo = FakeInvoiceRepository(invoices)
    service = ReconciliationService(
        mock_session,
        registry=registry,
        invoices=invoice_repo,
        orders=order_repo,
        max_attempts=max_attempts,
    )
    return service, order_repo, invoice_repo


# ============================================================================
# Removing an order
# ============================================================================


class TestRemoveOrderFromInvoices:
    @pytest.mark.asyncio
    async def test_period_invoice_keeps_remaining_order(self, mock_session) -> None:
        only_a, only_b = make_product("A"), make_product("B")
        order_a = period_order("100.00", products=[(only_a, 1)])
        order_b = period_order("50.00", products=[(only_b, 1)])
        invoice = make_invoice([order_a, order_b])
        service, _, invoices = build(mock_session, [order_a, order_b], [invoice])

        report = await service.remove_order_from_invoices(order_a.id)

        assert invoice.order_ids == [str(order_b.id)]
        assert invoice.amount == Decimal("50.00")
        assert [i["product_id"] for i in invoice.items] == [str(only_b.id)]
        assert report.updated_invoices == [invoice.invoice_number]
        assert report.deleted_invoices == []
        assert invoices.saved == [invoice.invoice_number]
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_last_order_deletes_period_invoice(self, mock_session) -> None:
        order = period_order("75.00")
        invoice = make_invoice([order])
        service, _, invoices = build(mock_session, [order], [invoice])

        report = await service.remove_order_from_invoices(order.id)

        assert report.deleted_invoices == [invoice.invoice_number]
        assert invoices.invoices == []

    @pytest.mark.asyncio
    async def test_one_time_invoice_is_kept_empty(self, mock_session) -> None:
        order = make_order(total="30.00")
        invoice = make_invoice(
            [order], invoice_type=InvoiceType.ONE_TIME, invoice_number="INV-202603-0001"
        )
        service, _, invoices = build(mock_session, [order], [invoice])

        report = await service.remove_order_from_invoices(order.id)

        assert report.updated == 1
        assert invoices.invoices == [invoice]
        assert invoice.order_ids == []
        assert invoice.amount == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_missing_order_detaches_id_only(self, mock_session) -> None:
        remaining = period_order("40.00")
        gone_id = str(uuid.uuid4())
        invoice = make_invoice(
            [remaining],
            order_ids=[gone_id, str(remaining.id)],
            amount="90.00",
        )
        service, *_ = build(mock_session, [remaining], [invoice])

        await service.remove_order_from_invoices(gone_id)

        assert invoice.order_ids == [str(remaining.id)]
        assert invoice.amount == Decimal("90.00")

    @pytest.mark.asyncio
    async def test_remaining_delivered_orders_mark_invoice_paid(self, mock_session) -> None:
        pending = period_order("20.00")
        delivered = period_order("30.00", status=OrderStatus.DELIVERED)
        invoice = make_invoice([pending, delivered])
        service, *_ = build(mock_session, [pending, delivered], [invoice])

        await service.remove_order_from_invoices(pending.id)

        assert invoice.status == InvoiceStatus.PAID

    @pytest.mark.asyncio
    async def test_subscribers_receive_update_after_commit(self, mock_session, registry) -> None:
        order_a, order_b = period_order("100.00"), period_order("50.00")
        invoice = make_invoice([order_a, order_b])
        writer = RecordingWriter()
        registry.add_client("dashboard", writer)
        service, *_ = build(mock_session, [order_a, order_b], [invoice], registry=registry)

        await service.remove_order_from_invoices(order_a.id)

        [payload] = parse_frames(writer.frames)
        assert payload["invoices"][0]["orderIds"] == [str(order_b.id)]
        assert payload["invoices"][0]["amount"] == "50.00"

    @pytest.mark.asyncio
    async def test_failure_rolls_back_without_broadcast(self, mock_session, registry) -> None:
        order = period_order("10.00")
        invoice = make_invoice([order])
        writer = RecordingWriter()
        registry.add_client("dashboard", writer)
        service, _, invoices = build(mock_session, [order], [invoice], registry=registry)
        invoices.delete = AsyncMock(side_effect=RuntimeError("write failed"))

        with pytest.raises(ReconciliationError) as exc_info:
            await service.remove_order_from_invoices(order.id)

        assert exc_info.value.context["order_id"] == str(order.id)
        mock_session.rollback.assert_awaited_once()
        assert writer.frames == []


# ============================================================================
# Empty period invoice sweep
# ============================================================================


class TestCleanupEmptyPeriodInvoices:
    @pytest.mark.asyncio
    async def test_deletes_only_empty_period_invoices(self, mock_session) -> None:
        kept = make_invoice([period_order("10.00")], invoice_number="PER-202603-M-01-001")
        empty = make_invoice(order_ids=[], invoice_number="PER-202603-M-01-002")
        null = make_invoice(invoice_number="PER-202603-M-01-003")
        null.order_ids = None
        one_time = make_invoice(
            order_ids=[], invoice_type=InvoiceType.ONE_TIME, invoice_number="INV-202603-0001"
        )
        service, _, invoices = build(mock_session, invoices=[kept, empty, null, one_time])

        deleted = await service.cleanup_empty_period_invoices()

        assert deleted == 2
        assert invoices.invoices == [kept, one_time]

    @pytest.mark.asyncio
    async def test_second_run_deletes_nothing(self, mock_session) -> None:
        empty = make_invoice(order_ids=[], invoice_number="PER-202603-M-01-002")
        service, *_ = build(mock_session, invoices=[empty])

        assert await service.cleanup_empty_period_invoices() == 1
        assert await service.cleanup_empty_period_invoices() == 0


# ============================================================================
# Forced repair
# ============================================================================


class TestForceCleanup:
    def _fixture(self, mock_session, registry=None):
        alive = period_order("60.00")
        gone = str(uuid.uuid4())
        partial = make_invoice(
            [alive],
            order_ids=[str(alive.id), gone],
            amount="160.00",
            invoice_number="PER-202603-M-01-001",
        )
        orphan = make_invoice(
            order_ids=[str(uuid.uuid4())],
            invoice_type=InvoiceType.ONE_TIME,
            amount="25.00",
            invoice_number="INV-202603-0007",
        )
        healthy_order = make_order(total="15.00")
        healthy = make_invoice(
            [healthy_order],
            invoice_type=InvoiceType.ONE_TIME,
            invoice_number="INV-202603-0008",
        )
        service, _, invoices = build(
            mock_session,
            [alive, healthy_order],
            [partial, orphan, healthy],
            registry=registry,
        )
        return service, invoices, partial, orphan, healthy, alive

    @pytest.mark.asyncio
    async def test_dry_run_reports_without_writing(self, mock_session, registry) -> None:
        writer = RecordingWriter()
        registry.add_client("dashboard", writer)
        service, invoices, partial, orphan, _, _ = self._fixture(mock_session, registry)

        report = await service.force_cleanup_invalid_invoices(dry_run=True)

        assert report.dry_run is True
        assert report.deleted_invoices == ["INV-202603-0007"]
        assert report.updated_invoices == ["PER-202603-M-01-001"]
        assert report.changed is False
        assert len(invoices.invoices) == 3
        assert partial.amount == Decimal("160.00")
        assert invoices.saved == []
        mock_session.rollback.assert_awaited()
        assert writer.frames == []

    @pytest.mark.asyncio
    async def test_apply_deletes_orphans_and_rebuilds_partials(self, mock_session, registry) -> None:
        writer = RecordingWriter()
        registry.add_client("dashboard", writer)
        service, invoices, partial, orphan, healthy, alive = self._fixture(
            mock_session, registry
        )

        report = await service.force_cleanup_invalid_invoices(dry_run=False)

        assert report.to_dict() == {
            "dry_run": False,
            "deleted": 1,
            "updated": 1,
            "deleted_invoices": ["INV-202603-0007"],
            "updated_invoices": ["PER-202603-M-01-001"],
        }
        assert orphan not in invoices.invoices
        assert partial.order_ids == [str(alive.id)]
        assert partial.amount == Decimal("60.00")
        assert healthy in invoices.invoices
        assert len(writer.frames) == 1


# ============================================================================
# Amount sync
# ============================================================================


class TestSyncInvoiceAmounts:
    @pytest.mark.asyncio
    async def test_only_drifted_amounts_are_written(self, mock_session) -> None:
        first, second = period_order("100.00"), period_order("50.00")
        drifted = make_invoice([first, second], amount="120.00")
        correct_order = make_order(total="15.00")
        correct = make_invoice(
            [correct_order], invoice_type=InvoiceType.ONE_TIME, invoice_number="INV-202603-0001"
        )
        service, _, invoices = build(
            mock_session, [first, second, correct_order], [drifted, correct]
        )

        report = await service.sync_invoice_amounts()

        assert report.updated_invoices == [drifted.invoice_number]
        assert drifted.amount == Decimal("150.00")
        assert invoices.saved == [drifted.invoice_number]


# ============================================================================
# Concurrent updates
# ============================================================================


class TestConcurrentUpdates:
    @pytest.mark.asyncio
    async def test_stale_commit_is_replayed(self, mock_session) -> None:
        service, *_ = build(mock_session)
        body = AsyncMock(return_value="done")
        mock_session.commit.side_effect = [StaleDataError("version mismatch"), None]

        result = await service._run_in_transaction("test_operation", body)

        assert result == "done"
        assert body.await_count == 2
        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_conflict_after_all_attempts(self, mock_session) -> None:
        service, *_ = build(mock_session, max_attempts=2)
        body = AsyncMock(return_value=None)
        mock_session.commit.side_effect = StaleDataError("version mismatch")

        with pytest.raises(InvoiceConflictError) as exc_info:
            await service._run_in_transaction("test_operation", body, order_id="o-1")

        assert body.await_count == 2
        assert exc_info.value.context["attempts"] == 2
        assert exc_info.value.context["order_id"] == "o-1"
