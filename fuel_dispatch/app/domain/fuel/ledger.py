"""
Fuel Ledger (pure domain logic).

Decimal arithmetic and validation over fuel quantities. No I/O and no
exceptions: every check returns a LedgerResult the services translate into
typed errors.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

QUANTUM = Decimal("0.01")

INVALID_QUANTITY = "INVALID_QUANTITY"
INSUFFICIENT_FUEL = "INSUFFICIENT_FUEL"
CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"


def to_decimal(value: Any) -> Decimal:
    """
    Coerce a quantity to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its binary
    expansion. None and unparseable input become Decimal("NaN"), which every
    validator rejects as INVALID_QUANTITY.
    """
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        return Decimal("NaN")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("NaN")


def _is_positive(value: Decimal) -> bool:
    return value.is_finite() and value > 0


@dataclass(frozen=True)
class LedgerResult:
    ok: bool
    value: Optional[Decimal] = None
    error: Optional[str] = None
    message: str = ""
    context: Dict[str, Decimal] = field(default_factory=dict)

    @classmethod
    def success(cls, value: Optional[Decimal] = None) -> "LedgerResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str, message: str, **context: Decimal) -> "LedgerResult":
        return cls(ok=False, error=error, message=message, context=context)


@dataclass(frozen=True)
class MeterCheck:
    within_tolerance: bool
    computed: Decimal
    delta: Decimal
    tolerance: Decimal


class FuelLedger:

    @staticmethod
    def validate_discharge(remaining: Any, requested: Any) -> LedgerResult:
        """
        Validate a discharge against the remaining balance.

        Returns:
            value = remaining - requested on success; INVALID_QUANTITY when
            requested <= 0; INSUFFICIENT_FUEL when requested > remaining.
        """
        remaining = to_decimal(remaining)
        requested = to_decimal(requested)

        if not _is_positive(requested):
            return LedgerResult.failure(
                INVALID_QUANTITY,
                f"Invalid quantity: {requested} gal. Quantity must be greater than 0",
                requested=requested,
            )
        if not remaining.is_finite() or requested > remaining:
            return LedgerResult.failure(
                INSUFFICIENT_FUEL,
                f"Insufficient fuel: requested {requested} gal, available {remaining} gal",
                requested=requested,
                available=remaining,
            )
        return LedgerResult.success(remaining - requested)

    @staticmethod
    def validate_allocation(total_loaded: Any, existing_allocations: Any, new_allocation: Any) -> LedgerResult:
        """
        Validate a new customer allocation against the assignment load.

        Returns:
            value = load left unallocated after this one on success;
            INVALID_QUANTITY when new_allocation <= 0; CAPACITY_EXCEEDED when
            existing + new > total_loaded.
        """
        total_loaded = to_decimal(total_loaded)
        existing = to_decimal(existing_allocations)
        new = to_decimal(new_allocation)

        if not _is_positive(new):
            return LedgerResult.failure(
                INVALID_QUANTITY,
                f"Invalid allocation: {new} gal. Quantity must be greater than 0",
                requested=new,
            )
        if not (total_loaded.is_finite() and existing.is_finite()):
            return LedgerResult.failure(
                INVALID_QUANTITY,
                f"Invalid load figures: loaded {total_loaded} gal, allocated {existing} gal",
                requested=new,
            )
        available = total_loaded - existing
        if existing + new > total_loaded:
            return LedgerResult.failure(
                CAPACITY_EXCEEDED,
                f"Allocation exceeds load: requested {new} gal, available {available} gal of {total_loaded} gal",
                requested=new,
                available=available,
                limit=total_loaded,
            )
        return LedgerResult.success(available - new)

    @staticmethod
    def validate_correction(remaining: Any, current: Any, corrected: Any) -> LedgerResult:
        """
        Validate changing a recorded discharge from current to corrected.

        The correction consumes (corrected - current) from the remaining
        balance; a negative difference gives fuel back.

        Returns:
            value = the new remaining balance on success.
        """
        remaining = to_decimal(remaining)
        current = to_decimal(current)
        corrected = to_decimal(corrected)

        if not _is_positive(corrected):
            return LedgerResult.failure(
                INVALID_QUANTITY,
                f"Invalid quantity: {corrected} gal. Quantity must be greater than 0",
                requested=corrected,
            )
        if not (remaining.is_finite() and current.is_finite()):
            return LedgerResult.failure(
                INVALID_QUANTITY,
                f"Invalid balance figures: remaining {remaining} gal, current {current} gal",
                requested=corrected,
            )
        difference = corrected - current
        if difference > remaining:
            return LedgerResult.failure(
                INSUFFICIENT_FUEL,
                f"Insufficient fuel: requested {difference} gal more, available {remaining} gal",
                requested=difference,
                available=remaining,
            )
        return LedgerResult.success(remaining - difference)

    @staticmethod
    def remaining_after(total_loaded: Any, discharged: Any) -> Decimal:
        """Balance left after the given discharged total, never below zero."""
        return max(to_decimal(total_loaded) - to_decimal(discharged), Decimal("0"))

    @staticmethod
    def cross_check_meter_reading(
        declared: Any,
        marker_start: Any,
        marker_end: Any,
        tolerance_ratio: Any = Decimal("0.02"),
    ) -> MeterCheck:
        """
        Compare the declared quantity with the meter readings.

        Meters count down while dispensing, so the metered quantity is
        marker_start - marker_end. Exactly-at-tolerance passes. Missing or
        non-finite inputs give a NaN check that is never within tolerance.
        """
        declared = to_decimal(declared)
        start, end, ratio = to_decimal(marker_start), to_decimal(marker_end), to_decimal(tolerance_ratio)
        if not all(v.is_finite() for v in (declared, start, end, ratio)):
            nan = Decimal("NaN")
            return MeterCheck(within_tolerance=False, computed=nan, delta=nan, tolerance=nan)

        computed = start - end
        delta = abs(computed - declared)
        tolerance = declared * ratio
        return MeterCheck(
            within_tolerance=delta <= tolerance,
            computed=computed,
            delta=delta,
            tolerance=tolerance,
        )
