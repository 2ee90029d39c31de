"""
Inventory state rules.

Responsibility:
    Transition table for inventory units and the consumability rule used
    by the production confirmation engine.  The session-backed checks (holds,
    row lookups) live in ``mes_kernel.services.inventory_state_validator``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - CONSUMED and SCRAPPED are terminal.
    - Consumable means AVAILABLE, or RESERVED for the consuming order line.
"""

from uuid import UUID

from mes_kernel.domain.statuses import InventoryState

I = InventoryState

TRANSITIONS: dict[InventoryState, frozenset[InventoryState]] = {
    I.AVAILABLE: frozenset({I.RESERVED, I.CONSUMED, I.BLOCKED, I.ON_HOLD}),
    I.RESERVED: frozenset({I.AVAILABLE, I.CONSUMED, I.BLOCKED}),
    I.PRODUCED: frozenset({I.AVAILABLE, I.CONSUMED, I.BLOCKED}),
    I.BLOCKED: frozenset({I.AVAILABLE, I.SCRAPPED}),
    I.ON_HOLD: frozenset({I.AVAILABLE, I.BLOCKED}),
    I.CONSUMED: frozenset(),
    I.SCRAPPED: frozenset(),
}


def can_transition(current: InventoryState | str, target: InventoryState | str) -> bool:
    return InventoryState(target) in TRANSITIONS[InventoryState(current)]


def is_terminal(state: InventoryState | str) -> bool:
    return not TRANSITIONS[InventoryState(state)]


def consumability_problem(
    state: InventoryState | str,
    reserved_for_order_line_id: UUID | None,
    consuming_order_line_id: UUID | None,
) -> str | None:
    """
    Explain why an inventory unit in ``state`` cannot be consumed.

    Returns ``None`` when it can.
    """
    state = InventoryState(state)
    if state == I.AVAILABLE:
        return None
    if state == I.RESERVED:
        if reserved_for_order_line_id is None or consuming_order_line_id is None:
            return "reserved inventory can only be consumed by the order line it is reserved for"
        if reserved_for_order_line_id != consuming_order_line_id:
            return f"reserved for order line {reserved_for_order_line_id}"
        return None
    return "only AVAILABLE or RESERVED inventory can be consumed"
