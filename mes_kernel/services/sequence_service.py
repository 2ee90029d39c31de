"""
BatchSequenceService -- per-bucket batch number counters.

Responsibility:
    Hands out the next sequence value for a (configuration scope, sequence
    key) pair.  The counter row is advanced with a single atomic
    ``UPDATE ... SET current_value = current_value + 1 ... RETURNING``;
    the first value of a new bucket is inserted inside a SAVEPOINT.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by BatchNumberService only.

Invariants enforced:
    - No two callers ever receive the same value for the same
      (config_id, sequence_key): the UPDATE takes the row lock, and a
      concurrent first insert loses on the unique constraint and retries
      the UPDATE.
    - Values are monotonic per key; a new reset bucket starts at 1.
    - The increment is transactional: it becomes visible when the caller
      commits, and a rollback returns it.

Failure modes:
    - IntegrityError on the concurrent-insert race (handled: savepoint
      rollback, then retry the UPDATE).
    - Any other SQLAlchemyError propagates; BatchNumberService degrades.
"""

from datetime import date

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mes_kernel.logging_config import get_logger
from mes_kernel.models.batch_numbering import BatchNumberSequenceModel

logger = get_logger("services.sequence")


class BatchSequenceService:
    """
    Counter store for batch numbers.

    Non-goals:
        - Does NOT commit; the caller owns the transaction.
    """

    def __init__(self, session: Session):
        self._session = session

    def _increment(self, config_id: str, sequence_key: str) -> int | None:
        stmt = (
            update(BatchNumberSequenceModel)
            .where(
                BatchNumberSequenceModel.config_id == config_id,
                BatchNumberSequenceModel.sequence_key == sequence_key,
            )
            .values(
                current_value=BatchNumberSequenceModel.current_value + 1,
                updated_at=func.now(),
            )
            .returning(BatchNumberSequenceModel.current_value)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def next_value(self, config_id: str, sequence_key: str, on_date: date | None = None) -> int:
        """
        Advance the counter for (config_id, sequence_key) and return the new value.

        Postconditions:
            - Returns an integer >= 1, strictly greater than any value
              previously returned for the same pair.
        """
        value = self._increment(config_id, sequence_key)
        if value is not None:
            logger.debug(
                "sequence_allocated",
                extra={"config_id": config_id, "sequence_key": sequence_key, "value": value},
            )
            return value

        try:
            with self._session.begin_nested():
                self._session.add(
                    BatchNumberSequenceModel(
                        config_id=config_id,
                        sequence_key=sequence_key,
                        current_value=1,
                        last_reset_on=on_date,
                    )
                )
        except IntegrityError:
            # Another transaction created the bucket first
            logger.debug(
                "sequence_counter_race_retry",
                extra={"config_id": config_id, "sequence_key": sequence_key},
            )
            value = self._increment(config_id, sequence_key)
            if value is None:
                raise
            logger.debug(
                "sequence_allocated",
                extra={"config_id": config_id, "sequence_key": sequence_key, "value": value},
            )
            return value

        logger.debug(
            "sequence_bucket_started",
            extra={"config_id": config_id, "sequence_key": sequence_key, "value": 1},
        )
        return 1

    def current_value(self, config_id: str, sequence_key: str) -> int | None:
        """Current counter value without incrementing, or None for an unused bucket."""
        return self._session.execute(
            select(BatchNumberSequenceModel.current_value).where(
                BatchNumberSequenceModel.config_id == config_id,
                BatchNumberSequenceModel.sequence_key == sequence_key,
            )
        ).scalar_one_or_none()

    def peek(self, config_id: str, sequence_key: str) -> int:
        """The value the next ``next_value`` call would return.  Writes nothing."""
        current = self.current_value(config_id, sequence_key)
        return 1 if current is None else current + 1
