"""Tests for ordered fatal and best-effort order action effects."""

from unittest.mock import AsyncMock

import pytest

from storefront.services.orders.effects import best_effort, fatal, run_effects


class TestRunEffects:
    @pytest.mark.asyncio
    async def test_fatal_effects_run_in_order_then_commit(self, mock_session) -> None:
        calls: list[str] = []

        async def step(name):
            calls.append(name)

        mock_session.commit.side_effect = lambda: calls.append("commit")

        failed = await run_effects(
            mock_session,
            [
                fatal("status", lambda: step("status")),
                fatal("stock", lambda: step("stock")),
                best_effort("email", lambda: step("email")),
            ],
        )

        assert calls == ["status", "stock", "commit", "email"]
        assert failed == []

    @pytest.mark.asyncio
    async def test_fatal_failure_rolls_back_and_skips_rest(self, mock_session) -> None:
        email = AsyncMock()
        later = AsyncMock()

        async def broken():
            raise RuntimeError("stock update failed")

        with pytest.raises(RuntimeError, match="stock update failed"):
            await run_effects(
                mock_session,
                [
                    fatal("stock", broken),
                    fatal("invoice", later),
                    best_effort("email", email),
                ],
                order_id="o-1",
            )

        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()
        later.assert_not_awaited()
        email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_commit_failure_rolls_back(self, mock_session) -> None:
        mock_session.commit.side_effect = RuntimeError("commit failed")

        with pytest.raises(RuntimeError):
            await run_effects(mock_session, [fatal("status", AsyncMock())])

        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_best_effort_failure_is_reported_not_raised(self, mock_session) -> None:
        async def unreachable_mail():
            raise ConnectionError("smtp down")

        after = AsyncMock()

        failed = await run_effects(
            mock_session,
            [
                fatal("status", AsyncMock()),
                best_effort("email", unreachable_mail),
                best_effort("audit", after),
            ],
        )

        assert failed == ["email"]
        after.assert_awaited_once()
        mock_session.rollback.assert_not_awaited()
