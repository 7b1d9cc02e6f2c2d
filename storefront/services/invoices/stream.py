"""
Live invoice updates for admin dashboards.

The application owns one InvoiceStreamRegistry (created in the lifespan and
kept on ``app.state``) and hands it to whatever needs to broadcast. Each
subscriber is a writer; the SSE endpoint registers a QueueWriter and drains
it into the response.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Optional, Protocol

from storefront.core.logging import get_logger
from storefront.schemas.invoices import invoice_payload

logger = get_logger(__name__)


class StreamWriter(Protocol):
    async def write(self, data: str) -> None: ...


class QueueWriter:
    """Writer backed by a bounded queue; a full queue counts as a failed write."""

    def __init__(self, maxsize: int = 100):
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)

    async def write(self, data: str) -> None:
        self.queue.put_nowait(data)

    async def iter_events(self) -> AsyncIterator[str]:
        while True:
            yield await self.queue.get()


def format_event(payload: dict[str, Any]) -> str:
    """Server-sent event frame for a JSON payload."""
    return f"data: {json.dumps(payload, default=str)}\n\n"


class InvoiceStreamRegistry:
    """Set of live invoice stream subscribers."""

    def __init__(self):
        self._clients: dict[str, StreamWriter] = {}

    def add_client(self, client_id: str, writer: StreamWriter) -> None:
        self._clients[client_id] = writer
        logger.info("Invoice stream client added", client_id=client_id, clients=len(self))

    def remove_client(self, client_id: str) -> None:
        self._clients.pop(client_id, None)
        logger.info("Invoice stream client removed", client_id=client_id, clients=len(self))

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._clients

    async def broadcast(self, payload: dict[str, Any]) -> int:
        """
        Write one event to every subscriber.

        A failing subscriber is logged and skipped.

        Returns:
            Number of subscribers that received the event
        """
        if not self._clients:
            return 0

        frame = format_event(payload)
        delivered = 0
        for client_id, writer in list(self._clients.items()):
            try:
                await writer.write(frame)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "Invoice stream write failed",
                    client_id=client_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.debug("Invoice update broadcast", delivered=delivered, clients=len(self))
        return delivered


async def publish_invoices(registry: Optional["InvoiceStreamRegistry"], invoices) -> None:
    """
    Broadcast the current invoice list from ``invoices`` (a repository).

    Errors are logged and swallowed; callers publish after commit.
    """
    if registry is None or len(registry) == 0:
        return

    try:
        await registry.broadcast(invoice_payload(await invoices.list_all()))
    except Exception as e:
        logger.warning(
            "Invoice broadcast failed",
            error=str(e),
            error_type=type(e).__name__,
        )
