"""
Human-readable order and invoice numbers.

Formats:
    ORD-YYYYMM-NNNN            one-time order
    PORD-YYYYMM-NNNN           period order
    INV-YYYYMM-NNNN            one-time invoice
    PER-YYYYMM-{W|M}-PP-NNN    period invoice (weekly or monthly period PP)

Sequences restart every month and are drawn from the number_sequences table
with a single upsert-and-increment statement.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.sequence import NumberSequence
from storefront.services.invoices.enums import PeriodType

logger = get_logger(__name__)

ORDER_KIND = "order"
PERIOD_ORDER_KIND = "period-order"
ONE_TIME_INVOICE_KIND = "one-time"


def format_order_number(year: int, month: int, sequence: int, period: bool = False) -> str:
    prefix = "PORD" if period else "ORD"
    return f"{prefix}-{year}{month:02d}-{sequence:04d}"


def format_invoice_number(year: int, month: int, sequence: int) -> str:
    return f"INV-{year}{month:02d}-{sequence:04d}"


def format_period_invoice_number(
    year: int,
    month: int,
    period_type: PeriodType,
    period_number: int,
    sequence: int,
) -> str:
    type_char = "W" if period_type == PeriodType.WEEKLY else "M"
    return f"PER-{year}{month:02d}-{type_char}-{period_number:02d}-{sequence:03d}"


def period_number_for(period_type: PeriodType, moment: datetime) -> int:
    """Week of the month (1-based, days 1-7 are week 1) or 1 for monthly."""
    if period_type == PeriodType.WEEKLY:
        return (moment.day - 1) // 7 + 1
    return 1


class NumberingService:
    """Allocates sequence numbers and formats them."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def next_sequence(
        self,
        kind: str,
        year: int,
        month: int,
        period_number: int = 0,
    ) -> int:
        """Increment and return the counter for one bucket, creating it at 1."""
        stmt = (
            insert(NumberSequence)
            .values(
                kind=kind,
                year=year,
                month=month,
                period_number=period_number,
                sequence=1,
            )
            .on_conflict_do_update(
                constraint="uq_number_sequences_bucket",
                set_={"sequence": NumberSequence.sequence + 1},
            )
            .returning(NumberSequence.sequence)
        )
        result = await self.session.execute(stmt)
        sequence = result.scalar_one()

        logger.debug(
            "Sequence allocated",
            kind=kind,
            year=year,
            month=month,
            period_number=period_number,
            sequence=sequence,
        )
        return sequence

    async def order_number(self, period: bool = False, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        kind = PERIOD_ORDER_KIND if period else ORDER_KIND
        sequence = await self.next_sequence(kind, now.year, now.month)
        return format_order_number(now.year, now.month, sequence, period=period)

    async def one_time_invoice_number(self, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        sequence = await self.next_sequence(ONE_TIME_INVOICE_KIND, now.year, now.month)
        return format_invoice_number(now.year, now.month, sequence)

    async def period_invoice_number(
        self,
        period_type: PeriodType = PeriodType.MONTHLY,
        now: Optional[datetime] = None,
    ) -> str:
        now = now or datetime.now(timezone.utc)
        period_number = period_number_for(period_type, now)
        sequence = await self.next_sequence(
            period_type.value, now.year, now.month, period_number
        )
        return format_period_invoice_number(
            now.year, now.month, period_type, period_number, sequence
        )
