"""
OperationResult -- tagged success/failure value returned by public services.

Responsibility:
    Carries either the value produced by a service operation or a structured
    ``OperationError`` describing why it was refused.  Precondition failures
    are data, not control flow: callers branch on ``result.is_success`` and
    pattern-match on ``result.error.kind``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Exactly one of ``value`` / ``error`` is meaningful, selected by
      ``status``.
    - ``error.details`` is a plain dict copied from the typed exception's
      attributes, safe to serialise.

Usage::

    result = allocation_service.allocate(batch_id, line_id, Decimal("300"))
    if not result.is_success:
        match result.error.kind:
            case ErrorKind.INSUFFICIENT_QUANTITY:
                warn(result.error.message)
            case ErrorKind.NOT_FOUND:
                ...
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from mes_kernel.exceptions import ErrorKind, MesKernelError

T = TypeVar("T")


class ResultStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass(frozen=True)
class OperationError:
    """Structured description of a refused operation."""

    kind: ErrorKind
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: MesKernelError) -> "OperationError":
        details = {
            key: value
            for key, value in vars(exc).items()
            if not key.startswith("_") and key != "args"
        }
        return cls(kind=exc.kind, code=exc.code, message=str(exc), details=details)


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """
    Result of a public service operation.

    Contract:
        Built only through ``ok()`` or ``failure()``.

    Guarantees:
        - ``unwrap()`` returns the value on success and re-raises the
          original typed exception on failure.
    """

    status: ResultStatus
    value: T | None = None
    error: OperationError | None = None
    exception: MesKernelError | None = field(default=None, repr=False, compare=False)

    @classmethod
    def ok(cls, value: T) -> "OperationResult[T]":
        return cls(status=ResultStatus.SUCCESS, value=value)

    @classmethod
    def failure(cls, exc: MesKernelError) -> "OperationResult[T]":
        return cls(
            status=ResultStatus.FAILED,
            error=OperationError.from_exception(exc),
            exception=exc,
        )

    @property
    def is_success(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    @property
    def message(self) -> str | None:
        return self.error.message if self.error is not None else None

    def unwrap(self) -> T:
        if self.is_success:
            return self.value
        raise self.exception
