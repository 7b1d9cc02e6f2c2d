"""
Ordered side effects of an order administration action.

Every action is described as a list of effects. A fatal effect is part of
the database transaction: it runs before commit and any failure rolls the
whole action back. A best-effort effect (customer email) runs after commit;
its failure is logged and never reaches the caller.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Effect:
    name: str
    action: Callable[[], Awaitable[Any]]
    fatal: bool = True


def fatal(name: str, action: Callable[[], Awaitable[Any]]) -> Effect:
    return Effect(name=name, action=action, fatal=True)


def best_effort(name: str, action: Callable[[], Awaitable[Any]]) -> Effect:
    return Effect(name=name, action=action, fatal=False)


async def run_effects(
    session: AsyncSession,
    effects: Sequence[Effect],
    **context: Any,
) -> list[str]:
    """
    Run fatal effects, commit, then run best-effort effects.

    Effects of each kind run in list order.

    Returns:
        Names of best-effort effects that failed

    Raises:
        Exception: Whatever a fatal effect or the commit raised, after rollback
    """
    try:
        for effect in effects:
            if effect.fatal:
                await effect.action()
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.error(
            "Order action rolled back",
            error=str(e),
            error_type=type(e).__name__,
            **context,
        )
        raise

    failed: list[str] = []
    for effect in effects:
        if effect.fatal:
            continue
        try:
            await effect.action()
        except Exception as e:
            failed.append(effect.name)
            logger.warning(
                "Best-effort step failed",
                effect=effect.name,
                error=str(e),
                error_type=type(e).__name__,
                **context,
            )
    return failed
