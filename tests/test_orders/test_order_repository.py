"""
Tests for OrderRepository statement construction.

The session is mocked; assertions inspect the SQL the repository sends.
"""

import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from conftest import make_order
from storefront.services.orders.repository import OrderRepository


def compiled(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


@pytest.fixture
def order():
    return make_order()


@pytest.fixture
def repository(mock_session, order) -> OrderRepository:
    result = MagicMock()
    result.scalar_one_or_none.return_value = order
    mock_session.execute.return_value = result
    return OrderRepository(mock_session)


class TestGetById:
    @pytest.mark.asyncio
    async def test_plain_read_takes_no_lock(self, repository, mock_session, order) -> None:
        assert await repository.get_by_id(order.id) is order

        stmt = mock_session.execute.await_args.args[0]
        assert "FOR UPDATE" not in compiled(stmt)

    @pytest.mark.asyncio
    async def test_for_update_locks_order_row(self, repository, mock_session, order) -> None:
        assert await repository.get_by_id(str(order.id), for_update=True) is order

        stmt = mock_session.execute.await_args.args[0]
        assert "FOR UPDATE OF orders" in compiled(stmt)
        assert stmt.get_execution_options()["populate_existing"] is True

    @pytest.mark.asyncio
    async def test_malformed_id_skips_query(self, repository, mock_session) -> None:
        assert await repository.get_by_id("not-a-uuid", for_update=True) is None

        mock_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_id_returns_none(self, repository, mock_session) -> None:
        mock_session.execute.return_value.scalar_one_or_none.return_value = None

        assert await repository.get_by_id(uuid.uuid4()) is None
