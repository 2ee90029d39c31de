"""
Batch numbering rules -- configuration precedence and number composition.

Responsibility:
    Everything about a batch number that can be decided without touching
    storage: which configuration applies, which counter (scope + sequence
    key) it draws from, and how the final string is laid out around the
    sequence value.  ``mes_kernel.services.batch_number_service`` feeds the
    active configurations in, asks the sequence service for the counter
    value, and renders the resulting ``NumberPlan``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Precedence: operation-type-specific -> material/product-specific ->
      global default; lowest ``priority`` wins inside a tier.
    - Sequence key = ``prefix`` (NEVER) or ``prefix-bucket`` where bucket is
      ``yyyyMMdd`` (DAILY), ``yyyyMM`` (MONTHLY) or ``yyyy`` (YEARLY).
    - Sequences are zero-padded to the configured width and widen beyond
      it (9999 -> 10000), never truncate.
    - Supplier lots are stripped to ``[A-Za-z0-9]`` and cut to 15 chars.

Failure modes:
    - ValueError from ``NumberPlan.render`` when a counter-backed plan is
      rendered without a sequence value.
    - Date patterns never fail: characters that are not a recognised token
      are copied literally.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Iterable

from mes_kernel.domain.statuses import ConfigStatus


class SequenceReset(str, Enum):
    DAILY = "DAILY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    NEVER = "NEVER"


class NumberKind(str, Enum):
    PRODUCTION = "PRODUCTION"
    RAW_MATERIAL = "RAW_MATERIAL"
    SPLIT = "SPLIT"
    MERGE = "MERGE"


# Operation types under which SPLIT / MERGE / receipt configurations are filed
RECEIPT_OPERATION_TYPE = "RM_RECEIPT"
SPLIT_OPERATION_TYPE = "SPLIT"
MERGE_OPERATION_TYPE = "MERGE"

_KIND_OPERATION_TYPE = {
    NumberKind.RAW_MATERIAL: RECEIPT_OPERATION_TYPE,
    NumberKind.SPLIT: SPLIT_OPERATION_TYPE,
    NumberKind.MERGE: MERGE_OPERATION_TYPE,
}

# Tiers each kind may draw a configuration from (0 = operation type,
# 1 = material/product, 2 = global default)
_KIND_TIERS = {
    NumberKind.PRODUCTION: (0, 1, 2),
    NumberKind.RAW_MATERIAL: (0, 1),
    NumberKind.SPLIT: (0,),
    NumberKind.MERGE: (0,),
}

FALLBACK_SCOPE = "FALLBACK"
RAW_MATERIAL_PREFIX = "RM"
PRODUCTION_PREFIX = "BATCH"
MERGE_PREFIX = "MRG"
FALLBACK_SEQUENCE_WIDTH = 3
SUPPLIER_LOT_MAX_LENGTH = 15

_DATE_TOKENS = re.compile(r"yyyy|yy|MM|dd|HH|mm|ss")
_STRFTIME = {
    "yyyy": "%Y",
    "yy": "%y",
    "MM": "%m",
    "dd": "%d",
    "HH": "%H",
    "mm": "%M",
    "ss": "%S",
}
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class BatchNumberConfigInfo:
    """One numbering configuration (match keys + layout + reset policy)."""

    config_id: str
    name: str
    prefix: str
    operation_type: str | None = None
    material_id: str | None = None
    product_sku: str | None = None
    include_operation_code: bool = False
    operation_code_length: int = 2
    separator: str = "-"
    date_format: str = "yyyyMMdd"
    include_date: bool = True
    sequence_length: int = 3
    sequence_reset: SequenceReset = SequenceReset.DAILY
    priority: int = 100
    status: ConfigStatus = ConfigStatus.ACTIVE

    @property
    def tier(self) -> int:
        if self.operation_type:
            return 0
        if self.material_id or self.product_sku:
            return 1
        return 2

    @property
    def specificity(self) -> int:
        return sum(
            1 for key in (self.operation_type, self.material_id, self.product_sku) if key
        )

    def matches(
        self,
        operation_type: str | None,
        material_id: str | None,
        product_sku: str | None,
    ) -> bool:
        """A set match key must equal the request value; unset keys match anything."""
        if self.operation_type and self.operation_type != operation_type:
            return False
        if self.material_id and self.material_id != material_id:
            return False
        if self.product_sku and self.product_sku != product_sku:
            return False
        return True


def resolve_config(
    configs: Iterable[BatchNumberConfigInfo],
    operation_type: str | None,
    material_id: str | None = None,
    product_sku: str | None = None,
    tiers: tuple[int, ...] = (0, 1, 2),
) -> BatchNumberConfigInfo | None:
    """
    Pick the configuration that governs a request.

    Pure: the caller passes the candidate list in.  Inactive configurations
    never match.  Ordering is (tier, priority, most specific first, name).
    """
    candidates = [
        config
        for config in configs
        if ConfigStatus(config.status) == ConfigStatus.ACTIVE
        and config.tier in tiers
        and config.matches(operation_type, material_id, product_sku)
    ]
    if not candidates:
        return None
    candidates.sort(key=lambda c: (c.tier, c.priority, -c.specificity, c.name))
    return candidates[0]


def to_strftime(pattern: str) -> str:
    """Translate a ``yyyyMMdd``-style pattern into an ``strftime`` format."""
    pieces: list[str] = []
    position = 0
    for match in _DATE_TOKENS.finditer(pattern):
        pieces.append(pattern[position:match.start()].replace("%", "%%"))
        pieces.append(_STRFTIME[match.group(0)])
        position = match.end()
    pieces.append(pattern[position:].replace("%", "%%"))
    return "".join(pieces)


def format_date(pattern: str, value: date | datetime) -> str:
    return value.strftime(to_strftime(pattern))


def reset_bucket(reset: SequenceReset | str, on_date: date) -> str:
    reset = SequenceReset(reset)
    if reset == SequenceReset.DAILY:
        return on_date.strftime("%Y%m%d")
    if reset == SequenceReset.MONTHLY:
        return on_date.strftime("%Y%m")
    if reset == SequenceReset.YEARLY:
        return f"{on_date.year:04d}"
    return ""


def sequence_key(prefix: str, reset: SequenceReset | str, on_date: date) -> str:
    bucket = reset_bucket(reset, on_date)
    return f"{prefix}-{bucket}" if bucket else prefix


def operation_code(operation_type: str, length: int) -> str:
    """Upper-cased operation type cut to ``length`` characters (never padded)."""
    return operation_type[: max(length, 0)].upper()


def format_sequence(value: int, width: int) -> str:
    return f"{value:0{max(width, 1)}d}"


def sanitize_supplier_lot(
    supplier_lot: str | None,
    max_length: int = SUPPLIER_LOT_MAX_LENGTH,
) -> str | None:
    """Strip non-alphanumerics, then cut to ``max_length``; empty -> ``None``."""
    if not supplier_lot:
        return None
    cleaned = _NON_ALNUM.sub("", supplier_lot)[:max_length]
    return cleaned or None


@dataclass(frozen=True)
class NumberPlan:
    """
    Everything needed to render a batch number except the sequence value.

    ``scope``/``sequence_key`` identify the counter to draw from; plans with
    ``scope=None`` need no counter (split and merge fallbacks).
    """

    kind: NumberKind
    head: str
    scope: str | None = None
    sequence_key: str | None = None
    separator: str = "-"
    sequence_width: int = FALLBACK_SEQUENCE_WIDTH
    tail: str = ""
    config_name: str | None = None

    @property
    def uses_sequence(self) -> bool:
        return self.scope is not None

    @property
    def is_fallback(self) -> bool:
        return self.config_name is None

    def render(self, sequence: int | None = None) -> str:
        if not self.uses_sequence:
            return f"{self.head}{self.tail}"
        if sequence is None or sequence < 1:
            raise ValueError(f"Sequence value required for {self.head}: {sequence!r}")
        return (
            f"{self.head}{self.separator}"
            f"{format_sequence(sequence, self.sequence_width)}{self.tail}"
        )


def _config_plan(
    kind: NumberKind,
    config: BatchNumberConfigInfo,
    operation_type: str | None,
    on_date: date,
    tail: str,
) -> NumberPlan:
    parts = [config.prefix]
    if config.include_operation_code and operation_type:
        parts.append(operation_code(operation_type, config.operation_code_length))
    if config.include_date:
        parts.append(format_date(config.date_format, on_date))
    return NumberPlan(
        kind=kind,
        head=config.separator.join(parts),
        scope=str(config.config_id),
        sequence_key=sequence_key(config.prefix, config.sequence_reset, on_date),
        separator=config.separator,
        sequence_width=config.sequence_length,
        tail=tail,
        config_name=config.name,
    )


def raw_material_fallback_plan(
    material_id: str | None,
    on_date: date,
    supplier_lot: str | None = None,
    lot_max_length: int = SUPPLIER_LOT_MAX_LENGTH,
) -> NumberPlan:
    """``RM-{material|UNKNOWN}-{yyyyMMdd}-{seq:03}[-{lot}]``"""
    head = f"{RAW_MATERIAL_PREFIX}-{material_id or 'UNKNOWN'}-{on_date.strftime('%Y%m%d')}"
    lot = sanitize_supplier_lot(supplier_lot, lot_max_length)
    return NumberPlan(
        kind=NumberKind.RAW_MATERIAL,
        head=head,
        scope=FALLBACK_SCOPE,
        sequence_key=head,
        tail=f"-{lot}" if lot else "",
    )


def production_fallback_plan(operation_type: str | None, on_date: date) -> NumberPlan:
    """``BATCH-{OP[:2]}-{yyyyMMdd}-{seq:03}``; the opcode is dropped for short types."""
    prefix = PRODUCTION_PREFIX
    if operation_type and len(operation_type) >= 2:
        prefix = f"{PRODUCTION_PREFIX}-{operation_type[:2].upper()}"
    head = f"{prefix}-{on_date.strftime('%Y%m%d')}"
    return NumberPlan(
        kind=NumberKind.PRODUCTION,
        head=head,
        scope=FALLBACK_SCOPE,
        sequence_key=head,
    )


def split_fallback_number(source_batch_number: str, split_index: int) -> str:
    return f"{source_batch_number}-S{split_index:02d}"


def merge_fallback_number(now: datetime) -> str:
    return f"{MERGE_PREFIX}-{now.strftime('%Y%m%d%H%M%S')}"


def plan_number(
    kind: NumberKind,
    configs: Iterable[BatchNumberConfigInfo],
    *,
    on_date: date,
    now: datetime,
    operation_type: str | None = None,
    product_sku: str | None = None,
    material_id: str | None = None,
    supplier_lot: str | None = None,
    source_batch_number: str | None = None,
    split_index: int = 1,
    lot_max_length: int = SUPPLIER_LOT_MAX_LENGTH,
) -> NumberPlan:
    """
    Build the plan for one batch number request.

    Preconditions:
        - SPLIT requests carry ``source_batch_number`` and ``split_index >= 1``.

    Returns:
        A config-driven plan when a configuration applies, otherwise the
        hard-coded fallback for ``kind``.
    """
    kind = NumberKind(kind)
    request_type = _KIND_OPERATION_TYPE.get(kind, operation_type)
    config = resolve_config(
        configs,
        request_type,
        material_id=material_id,
        product_sku=product_sku,
        tiers=_KIND_TIERS[kind],
    )

    if config is not None:
        tail = ""
        if kind == NumberKind.SPLIT:
            tail = f"{config.separator}{split_index:02d}"
        elif kind == NumberKind.RAW_MATERIAL:
            lot = sanitize_supplier_lot(supplier_lot, lot_max_length)
            tail = f"{config.separator}{lot}" if lot else ""
        return _config_plan(kind, config, request_type, on_date, tail)

    return fallback_plan(
        kind,
        on_date=on_date,
        now=now,
        operation_type=operation_type,
        material_id=material_id,
        supplier_lot=supplier_lot,
        source_batch_number=source_batch_number,
        split_index=split_index,
        lot_max_length=lot_max_length,
    )


def fallback_plan(
    kind: NumberKind,
    *,
    on_date: date,
    now: datetime,
    operation_type: str | None = None,
    material_id: str | None = None,
    supplier_lot: str | None = None,
    source_batch_number: str | None = None,
    split_index: int = 1,
    lot_max_length: int = SUPPLIER_LOT_MAX_LENGTH,
) -> NumberPlan:
    """The hard-coded format for ``kind``, used when no configuration applies."""
    kind = NumberKind(kind)
    if kind == NumberKind.RAW_MATERIAL:
        return raw_material_fallback_plan(material_id, on_date, supplier_lot, lot_max_length)
    if kind == NumberKind.SPLIT:
        if not source_batch_number:
            raise ValueError("Split numbers need the source batch number")
        return NumberPlan(
            kind=kind, head=split_fallback_number(source_batch_number, split_index)
        )
    if kind == NumberKind.MERGE:
        return NumberPlan(kind=kind, head=merge_fallback_number(now))
    return production_fallback_plan(operation_type, on_date)
