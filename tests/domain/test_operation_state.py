"""
Tests for the operation state machine (mes_kernel/domain/operation_state.py).
"""

from dataclasses import dataclass
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from mes_kernel.domain.operation_state import (
    BLOCKABLE_STATUSES,
    can_transition,
    is_executable,
    is_terminal,
    next_ready_operation,
    resolve_confirmation,
    restore_status_after_unblock,
    validate_transition,
)
from mes_kernel.domain.statuses import ConfirmationStatus, OperationStatus
from mes_kernel.exceptions import InvalidStateTransitionError

S = OperationStatus


@dataclass
class _Op:
    sequence_number: int
    status: str


class TestTransitions:

    def test_forward_path(self):
        assert can_transition(S.NOT_STARTED, S.READY)
        assert can_transition(S.READY, S.IN_PROGRESS)
        assert can_transition(S.IN_PROGRESS, S.CONFIRMED)

    def test_confirmed_is_terminal(self):
        assert is_terminal(S.CONFIRMED)
        for target in OperationStatus:
            assert not can_transition(S.CONFIRMED, target)

    def test_cannot_skip_ready(self):
        assert not can_transition(S.NOT_STARTED, S.IN_PROGRESS)

    def test_validate_raises_typed_error(self):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            validate_transition("op-1", "NOT_STARTED", "CONFIRMED")
        assert exc_info.value.code == "INVALID_STATE_TRANSITION"

    def test_blockable_statuses(self):
        assert BLOCKABLE_STATUSES == {S.NOT_STARTED, S.READY, S.IN_PROGRESS, S.PARTIALLY_CONFIRMED}

    def test_only_ready_and_in_progress_execute(self):
        assert is_executable("READY")
        assert is_executable(S.IN_PROGRESS)
        assert not is_executable(S.NOT_STARTED)
        assert not is_executable(S.BLOCKED)


class TestResolveConfirmation:

    def test_partial_leaves_operation_in_progress(self):
        outcome = resolve_confirmation(Decimal("0"), Decimal("60"), Decimal("100"))
        assert outcome.is_partial
        assert outcome.total_confirmed == Decimal("60")
        assert outcome.remaining_qty == Decimal("40")
        assert outcome.confirmation_status == ConfirmationStatus.PARTIALLY_CONFIRMED
        assert outcome.operation_status == S.IN_PROGRESS

    def test_reaching_target_confirms(self):
        outcome = resolve_confirmation(Decimal("60"), Decimal("40"), Decimal("100"))
        assert not outcome.is_partial
        assert outcome.remaining_qty == Decimal("0")
        assert outcome.operation_status == S.CONFIRMED

    def test_over_production_is_full(self):
        outcome = resolve_confirmation(Decimal("0"), Decimal("120"), Decimal("100"))
        assert outcome.total_confirmed == Decimal("120")
        assert outcome.confirmation_status == ConfirmationStatus.CONFIRMED

    def test_forced_partial_never_negative_remaining(self):
        outcome = resolve_confirmation(Decimal("50"), Decimal("80"), Decimal("100"), force_partial=True)
        assert outcome.is_partial
        assert outcome.remaining_qty == Decimal("0")


class TestNextReadyOperation:

    def test_picks_first_not_started_after_confirmed(self):
        ops = [
            _Op(3, "NOT_STARTED"),
            _Op(1, "CONFIRMED"),
            _Op(2, "NOT_STARTED"),
        ]
        assert next_ready_operation(ops, 1).sequence_number == 2

    def test_skips_other_statuses(self):
        ops = [_Op(1, "CONFIRMED"), _Op(2, "BLOCKED"), _Op(3, "NOT_STARTED")]
        assert next_ready_operation(ops, 1).sequence_number == 3

    def test_none_when_routing_complete(self):
        ops = [_Op(1, "CONFIRMED"), _Op(2, "CONFIRMED")]
        assert next_ready_operation(ops, 2) is None


class TestRestoreAfterUnblock:

    @pytest.mark.parametrize(
        "recorded, expected",
        [
            (None, S.READY),
            ("NOT_STARTED", S.NOT_STARTED),
            ("IN_PROGRESS", S.IN_PROGRESS),
            ("PARTIALLY_CONFIRMED", S.PARTIALLY_CONFIRMED),
            ("CONFIRMED", S.READY),
        ],
    )
    def test_restores_recorded_status(self, recorded, expected):
        assert restore_status_after_unblock(recorded) == expected


quantities = st.decimals(min_value=0, max_value=10**6, places=3, allow_nan=False, allow_infinity=False)


@given(confirmed=quantities, produced=quantities, target=quantities)
def test_confirmed_quantity_only_grows(confirmed, produced, target):
    outcome = resolve_confirmation(confirmed, produced, target)
    assert outcome.total_confirmed >= confirmed
    assert outcome.remaining_qty >= 0
    assert outcome.is_partial == (confirmed + produced < target)
