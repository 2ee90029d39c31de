"""
Batch sizing -- how produced quantity is cut into output batches.

Responsibility:
    The production confirmation engine asks a ``BatchSizer`` for the list of
    output-batch quantities and treats the answer as an opaque list of
    positive decimals summing to the produced quantity.  Two sizers ship
    with the kernel: ``SingleBatchSizer`` (the default: everything in one
    batch) and ``MaxBatchSizeSizer`` (rule-driven, cuts at a maximum size).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - ``sum(split(q)) == q`` exactly, and every element is > 0.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, Sequence

from mes_kernel.domain.quantities import ZERO
from mes_kernel.logging_config import get_logger

logger = get_logger("domain.batch_sizing")


class BatchSizer(Protocol):
    def split(
        self,
        quantity: Decimal,
        operation_type: str | None = None,
        product_sku: str | None = None,
        material_id: str | None = None,
    ) -> list[Decimal]:
        ...


class SingleBatchSizer:
    """Every confirmation produces exactly one output batch."""

    def split(
        self,
        quantity: Decimal,
        operation_type: str | None = None,
        product_sku: str | None = None,
        material_id: str | None = None,
    ) -> list[Decimal]:
        return [quantity]


@dataclass(frozen=True)
class BatchSizeRule:
    """
    Sizing rule for one operation type / material / product (``None`` = any).

    ``preferred_batch_size`` defaults to ``max_batch_size``.
    """

    max_batch_size: Decimal
    preferred_batch_size: Decimal | None = None
    min_batch_size: Decimal | None = None
    allow_partial_batch: bool = True
    operation_type: str | None = None
    material_id: str | None = None
    product_sku: str | None = None

    def __post_init__(self):
        if self.max_batch_size <= ZERO:
            raise ValueError(f"max_batch_size must be positive: {self.max_batch_size}")
        preferred = self.preferred_batch_size
        if preferred is not None and not (ZERO < preferred <= self.max_batch_size):
            raise ValueError(
                f"preferred_batch_size must be in (0, {self.max_batch_size}]: {preferred}"
            )

    @property
    def specificity(self) -> int:
        return sum(
            1 for key in (self.operation_type, self.material_id, self.product_sku) if key
        )

    def matches(self, operation_type, material_id, product_sku) -> bool:
        return (
            (self.operation_type is None or self.operation_type == operation_type)
            and (self.material_id is None or self.material_id == material_id)
            and (self.product_sku is None or self.product_sku == product_sku)
        )


class MaxBatchSizeSizer:
    """
    Cut produced quantity at the most specific matching rule.

    Quantities up to ``max_batch_size`` stay in one batch.  Larger quantities
    become full batches of the preferred size plus a remainder.  A remainder
    below ``min_batch_size``, or any remainder when the rule disallows
    partial batches, is folded into the last full batch when that stays
    within the maximum.
    """

    def __init__(self, rules: Sequence[BatchSizeRule]):
        self._rules = list(rules)

    def rule_for(self, operation_type, material_id, product_sku) -> BatchSizeRule | None:
        matching = [
            rule
            for rule in self._rules
            if rule.matches(operation_type, material_id, product_sku)
        ]
        if not matching:
            return None
        return max(matching, key=lambda rule: rule.specificity)

    def split(
        self,
        quantity: Decimal,
        operation_type: str | None = None,
        product_sku: str | None = None,
        material_id: str | None = None,
    ) -> list[Decimal]:
        rule = self.rule_for(operation_type, material_id, product_sku)
        if rule is None or quantity <= rule.max_batch_size:
            return [quantity]

        preferred = rule.preferred_batch_size or rule.max_batch_size
        minimum = rule.min_batch_size or ZERO
        sizes: list[Decimal] = []
        remaining = quantity
        while remaining >= preferred:
            sizes.append(preferred)
            remaining -= preferred

        if remaining > ZERO:
            fold = remaining < minimum or not rule.allow_partial_batch
            if fold and sizes and sizes[-1] + remaining <= rule.max_batch_size:
                sizes[-1] = sizes[-1] + remaining
            else:
                sizes.append(remaining)

        logger.debug(
            "batch_sizes_calculated",
            extra={
                "quantity": str(quantity),
                "operation_type": operation_type,
                "batch_count": len(sizes),
                "max_batch_size": str(rule.max_batch_size),
            },
        )
        return sizes
