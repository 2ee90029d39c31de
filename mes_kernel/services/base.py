"""
BaseService -- common constructor and unit-of-work handling for services.

Responsibility:
    Holds the session, clock, audit sink and actor default every service
    needs, and runs each public operation as one unit of work that ends in
    an ``OperationResult``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - A public operation either commits everything it wrote or nothing:
      on a MesKernelError the unit of work is rolled back and the error is
      returned as data; any other exception rolls back and propagates.
    - ``auto_commit=False`` services only flush, inside a savepoint that is
      rolled back when the operation is refused.  The caller's session_scope
      (or the confirmation engine) owns commit.
    - Internal primitives (``create_batch``, ``consume``, ...) raise typed
      exceptions and never commit; only ``_execute`` turns them into results.

Failure modes:
    - SQLAlchemy errors propagate after rollback (storage is not a
      precondition failure).
"""

from abc import ABC
from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from mes_kernel.domain.clock import Clock, SystemClock
from mes_kernel.domain.dtos import SYSTEM_ACTOR, resolve_actor
from mes_kernel.domain.results import OperationResult
from mes_kernel.exceptions import MesKernelError
from mes_kernel.logging_config import get_logger
from mes_kernel.services.audit_service import AuditService, AuditSink

T = TypeVar("T")

_logger = get_logger("services.base")


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller.  With
        ``auto_commit=True`` (the default) each public operation is its own
        transaction; with ``auto_commit=False`` the caller owns commit.
    """

    logger = _logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        auto_commit: bool = True,
        default_actor: str = SYSTEM_ACTOR,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.audit = AuditService(audit, session=session, clock=self.clock)
        self.auto_commit = auto_commit
        self.default_actor = default_actor

    def _actor(self, actor: str | None) -> str:
        return resolve_actor(actor, self.default_actor)

    def _execute(self, action: str, work: Callable[[], T], **context) -> OperationResult[T]:
        """
        Run ``work`` as one unit of work.

        Returns ``OperationResult.ok(value)`` on success and
        ``OperationResult.failure(exc)`` when ``work`` raises a kernel error.
        """
        try:
            if self.auto_commit:
                value = work()
                self.session.commit()
            else:
                # Savepoint so a refused operation leaves the caller's work intact
                with self.session.begin_nested():
                    value = work()
                self.session.flush()
        except MesKernelError as exc:
            if self.auto_commit:
                self.session.rollback()
            self.logger.warning(
                f"{action}_rejected",
                extra={
                    "error_code": exc.code,
                    "error_kind": exc.kind.value,
                    "reason": str(exc),
                    **context,
                },
            )
            return OperationResult.failure(exc)
        except Exception:
            if self.auto_commit:
                self.session.rollback()
            self.logger.error(f"{action}_failed", exc_info=True, extra=context)
            raise
        return OperationResult.ok(value)
