"""
Numbering Service.

Year-scoped identifiers of the form PREFIX-NNNNNN-YYYY (vale numbers use
PE, dispatch numbers use PETRUS). Sequences come from a durable counter row
per (prefix, year) that is only ever advanced by one conditional UPDATE, so
concurrent callers never receive the same number.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from fuel_dispatch.app.core.exceptions import InvalidStateError, NumberingExhaustedError
from fuel_dispatch.app.db.session import utcnow
from fuel_dispatch.app.models.number_sequence import NumberSequence

logger = logging.getLogger(__name__)

KNOWN_PREFIXES = ("PE", "PETRUS")
MAX_SEQUENCE = 999999
NUMBER_PATTERN = re.compile(r"^(PE|PETRUS)-(\d{6})-(\d{4})$")

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class ParsedNumber:
    prefix: str
    sequence: int
    year: int


@dataclass(frozen=True)
class NumberingStats:
    prefix: str
    year: int
    total_issued: int
    last_identifier: Optional[str]
    average_per_month: Decimal


class NumberingService:

    @staticmethod
    def format(prefix: str, sequence: int, year: int) -> str:
        return f"{prefix}-{sequence:06d}-{year}"

    @staticmethod
    def parse(identifier: str) -> Optional[ParsedNumber]:
        """Split an identifier into its parts, or None if it is malformed."""
        match = NUMBER_PATTERN.fullmatch(identifier or "")
        if not match:
            return None
        return ParsedNumber(prefix=match.group(1), sequence=int(match.group(2)), year=int(match.group(3)))

    @staticmethod
    def is_valid(identifier: str) -> bool:
        return NumberingService.parse(identifier) is not None

    @staticmethod
    async def next(db: AsyncSession, prefix: str, year: Optional[int] = None) -> str:
        """
        Issue the next identifier for (prefix, year).

        Runs inside the caller's transaction; the number is only durable once
        the caller commits.

        Args:
            db: Database session
            prefix: PE or PETRUS
            year: Calendar year, defaults to the current UTC year

        Returns:
            Identifier such as PE-000001-2025

        Raises:
            InvalidStateError: Unknown prefix
            NumberingExhaustedError: The year has used all 999999 sequences
        """
        prefix, year = NumberingService._key(prefix, year)

        await NumberingService._ensure_counter(db, prefix, year)

        stmt = (
            update(NumberSequence)
            .where(
                NumberSequence.prefix == prefix,
                NumberSequence.year == year,
                NumberSequence.last_number < MAX_SEQUENCE,
            )
            .values(last_number=NumberSequence.last_number + 1, updated_at=utcnow())
            .returning(NumberSequence.last_number)
            .execution_options(synchronize_session=False)
        )
        sequence = (await db.execute(stmt)).scalar_one_or_none()
        if sequence is None:
            logger.error("Number sequence %s/%s exhausted", prefix, year)
            raise NumberingExhaustedError(prefix, year)

        return NumberingService.format(prefix, sequence, year)

    @staticmethod
    async def peek(db: AsyncSession, prefix: str, year: Optional[int] = None) -> str:
        """The identifier next() would return, without consuming it."""
        prefix, year = NumberingService._key(prefix, year)
        last = await NumberingService._last_number(db, prefix, year)
        if last >= MAX_SEQUENCE:
            raise NumberingExhaustedError(prefix, year)
        return NumberingService.format(prefix, last + 1, year)

    @staticmethod
    async def stats(
        db: AsyncSession,
        prefix: str,
        year: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> NumberingStats:
        """
        Issued totals for a year.

        The monthly average only counts elapsed months for the current year.
        """
        prefix, year = NumberingService._key(prefix, year)
        now = now or utcnow()
        total = await NumberingService._last_number(db, prefix, year)

        if year == now.year:
            months = now.month
        elif year < now.year:
            months = 12
        else:
            months = 0
        average = Decimal(total) / months if months else Decimal("0")

        return NumberingStats(
            prefix=prefix,
            year=year,
            total_issued=total,
            last_identifier=NumberingService.format(prefix, total, year) if total else None,
            average_per_month=average.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        )

    @staticmethod
    def _key(prefix: str, year: Optional[int]):
        prefix = (prefix or "").upper()
        if prefix not in KNOWN_PREFIXES:
            raise InvalidStateError(
                f"Unknown number prefix '{prefix}'",
                details={"prefix": prefix, "allowed": list(KNOWN_PREFIXES)},
            )
        year = year or utcnow().year
        if not 1000 <= year <= 9999:
            raise InvalidStateError(f"Year {year} cannot be formatted", details={"year": year})
        return prefix, year

    @staticmethod
    async def _last_number(db: AsyncSession, prefix: str, year: int) -> int:
        result = await db.execute(
            select(NumberSequence.last_number).where(
                NumberSequence.prefix == prefix,
                NumberSequence.year == year,
            )
        )
        return result.scalar_one_or_none() or 0

    @staticmethod
    async def _ensure_counter(db: AsyncSession, prefix: str, year: int) -> None:
        """Create the (prefix, year) row if missing; a concurrent creator wins silently."""
        dialect = db.get_bind().dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise InvalidStateError(
                f"Numbering requires PostgreSQL or SQLite, got {dialect}",
                details={"dialect": dialect},
            )
        now = utcnow()
        stmt = (
            insert(NumberSequence)
            .values(prefix=prefix, year=year, last_number=0, created_at=now, updated_at=now)
            .on_conflict_do_nothing(index_elements=["prefix", "year"])
        )
        await db.execute(stmt)
