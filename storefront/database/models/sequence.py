"""Counter rows backing human-readable order and invoice numbers."""

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel


class NumberSequence(BaseModel):
    """
    Monotonic counter per number kind and calendar bucket.

    A row is keyed by (kind, year, month, period_number); period_number is 0
    for monthly one-time numbering and the week or month index for period
    invoices.
    """

    __tablename__ = "number_sequences"

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    period_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "kind", "year", "month", "period_number", name="uq_number_sequences_bucket"
        ),
    )
