"""Tests for the live invoice stream registry."""

import json

import pytest

from conftest import FakeInvoiceRepository, RecordingWriter, make_invoice, make_order, parse_frames
from storefront.services.invoices.stream import (
    InvoiceStreamRegistry,
    QueueWriter,
    format_event,
    publish_invoices,
)


class TestRegistry:
    def test_add_and_remove_clients(self, registry) -> None:
        registry.add_client("a", RecordingWriter())
        registry.add_client("b", RecordingWriter())

        registry.remove_client("a")
        registry.remove_client("missing")

        assert len(registry) == 1
        assert "b" in registry
        assert "a" not in registry

    @pytest.mark.asyncio
    async def test_broadcast_without_clients(self, registry) -> None:
        assert await registry.broadcast({"invoices": []}) == 0

    @pytest.mark.asyncio
    async def test_failing_writer_is_skipped(self, registry) -> None:
        healthy, broken = RecordingWriter(), RecordingWriter(fail=True)
        registry.add_client("healthy", healthy)
        registry.add_client("broken", broken)

        delivered = await registry.broadcast({"invoices": []})

        assert delivered == 1
        assert parse_frames(healthy.frames) == [{"invoices": []}]

    @pytest.mark.asyncio
    async def test_full_queue_counts_as_failure(self, registry) -> None:
        writer = QueueWriter(maxsize=1)
        registry.add_client("slow", writer)

        assert await registry.broadcast({"n": 1}) == 1
        assert await registry.broadcast({"n": 2}) == 0
        assert writer.queue.qsize() == 1


class TestFormatting:
    def test_event_frame(self) -> None:
        frame = format_event({"invoices": [{"amount": "10.00"}]})

        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: ") :]) == {"invoices": [{"amount": "10.00"}]}


class TestPublish:
    @pytest.mark.asyncio
    async def test_no_registry_is_a_noop(self) -> None:
        await publish_invoices(None, FakeInvoiceRepository())

    @pytest.mark.asyncio
    async def test_publishes_current_invoices(self, registry) -> None:
        writer = RecordingWriter()
        registry.add_client("dashboard", writer)
        invoice = make_invoice([make_order(total="12.00")])

        await publish_invoices(registry, FakeInvoiceRepository([invoice]))

        [payload] = parse_frames(writer.frames)
        assert payload["invoices"][0]["invoiceNumber"] == invoice.invoice_number
        assert payload["invoices"][0]["invoiceType"] == "period"

    @pytest.mark.asyncio
    async def test_repository_failure_is_swallowed(self) -> None:
        class BrokenRepository:
            async def list_all(self):
                raise RuntimeError("database unavailable")

        registry = InvoiceStreamRegistry()
        writer = RecordingWriter()
        registry.add_client("dashboard", writer)

        await publish_invoices(registry, BrokenRepository())

        assert writer.frames == []
