"""
BatchNumberService -- configuration-driven, collision-free batch numbers.

Responsibility:
    Loads the ACTIVE numbering configurations, hands them to the pure
    planner in ``domain.batch_numbering``, draws the sequence value from
    ``BatchSequenceService`` and renders the number.  Also owns the
    configuration rows (register, seed from YAML).

Architecture position:
    Kernel > Services -- imperative shell.
    Called by BatchLifecycleService (split, merge, production outputs) and
    MaterialReceiptService (raw-material receipts).

Invariants enforced:
    - Two ``generate`` calls for the same configuration and bucket never
      return the same number (atomic counter increment).
    - ``preview`` writes nothing: repeated previews are identical until a
      ``generate`` advances the counter.
    - Numbering never blocks production: a storage error while reading
      configurations or advancing the counter degrades to the hard-coded
      fallback format with sequence 001.  Only the numbering SAVEPOINT is
      rolled back; the caller's unit of work carries on.

Failure modes:
    - Degraded numbers are logged at WARNING as ``batch_number_degraded``.
    - register_config / load_configs return VALIDATION_FAILURE results for
      bad layout values and unknown enum values.
"""

from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mes_kernel.config import KernelConfig, load_yaml_file
from mes_kernel.domain.batch_numbering import (
    BatchNumberConfigInfo,
    NumberKind,
    NumberPlan,
    SequenceReset,
    fallback_plan,
    plan_number,
)
from mes_kernel.domain.clock import Clock
from mes_kernel.domain.results import OperationResult
from mes_kernel.domain.statuses import ConfigStatus
from mes_kernel.exceptions import (
    BlankReasonError,
    InvalidQuantityError,
    UnknownValueError,
    ValidationFailureError,
)
from mes_kernel.logging_config import get_logger
from mes_kernel.models.batch_numbering import BatchNumberConfigModel
from mes_kernel.services.audit_service import AuditSink
from mes_kernel.services.base import BaseService
from mes_kernel.services.sequence_service import BatchSequenceService

logger = get_logger("services.batch_number")

_CONFIG_FIELDS = (
    "name",
    "prefix",
    "operation_type",
    "material_id",
    "product_sku",
    "include_operation_code",
    "operation_code_length",
    "separator",
    "date_format",
    "include_date",
    "sequence_length",
    "sequence_reset",
    "priority",
    "status",
)


class BatchNumberService(BaseService):
    """
    Batch number generator.

    Contract:
        ``generate``/``preview`` return a number string and never raise for
        storage problems.  The counter increment joins the caller's
        transaction; nothing here commits except register/load of
        configurations through ``_execute``.
    """

    logger = logger

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        auto_commit: bool = True,
        config: KernelConfig | None = None,
        sequences: BatchSequenceService | None = None,
    ):
        self.config = config or KernelConfig.with_defaults()
        super().__init__(
            session,
            clock=clock,
            audit=audit,
            auto_commit=auto_commit,
            default_actor=self.config.default_actor,
        )
        self.sequences = sequences or BatchSequenceService(session)

    # ------------------------------------------------------------------
    # Configurations
    # ------------------------------------------------------------------

    def active_configs(self) -> list[BatchNumberConfigInfo]:
        rows = self.session.scalars(
            select(BatchNumberConfigModel).where(
                BatchNumberConfigModel.status == ConfigStatus.ACTIVE.value
            )
        )
        return [row.to_info() for row in rows]

    def register_config(
        self, name: str, prefix: str, actor: str | None = None, **settings: Any
    ) -> OperationResult[BatchNumberConfigInfo]:
        """Create one numbering configuration."""
        actor = self._actor(actor)

        def work() -> BatchNumberConfigInfo:
            return self._create_config({"name": name, "prefix": prefix, **settings}, actor).to_info()

        return self._execute("batch_number_config_register", work, config_name=name)

    def load_configs(
        self, source: Path | str | list[dict], actor: str | None = None
    ) -> OperationResult[list[BatchNumberConfigInfo]]:
        """
        Seed configurations from a YAML file or a list of mappings.

        The YAML document is either a list of configurations or a mapping
        with a ``batch_number_configs`` list.  Configurations whose name
        already exists are left untouched.
        """
        actor = self._actor(actor)

        def work() -> list[BatchNumberConfigInfo]:
            entries = source
            if isinstance(source, (str, Path)):
                document = load_yaml_file(source)
                entries = (
                    document.get("batch_number_configs", [])
                    if isinstance(document, dict)
                    else document
                )
            if not isinstance(entries, list):
                raise ValidationFailureError(
                    "batch_number_configs", "expected a list of configurations"
                )

            existing = set(self.session.scalars(select(BatchNumberConfigModel.name)))
            created = []
            for entry in entries:
                if not isinstance(entry, dict):
                    raise ValidationFailureError(
                        "batch_number_configs", f"expected a mapping, got {entry!r}"
                    )
                if entry.get("name") in existing:
                    logger.info(
                        "batch_number_config_exists",
                        extra={"config_name": entry.get("name")},
                    )
                    continue
                created.append(self._create_config(entry, actor).to_info())
                existing.add(entry["name"])
            return created

        result = self._execute("batch_number_configs_load", work)
        if result.is_success:
            logger.info("batch_number_configs_loaded", extra={"count": len(result.value)})
        return result

    def _create_config(self, values: dict, actor: str) -> BatchNumberConfigModel:
        unknown = sorted(set(values) - set(_CONFIG_FIELDS))
        if unknown:
            raise UnknownValueError("config field", unknown[0], _CONFIG_FIELDS)

        name = (values.get("name") or "").strip()
        prefix = (values.get("prefix") or "").strip()
        if not name:
            raise BlankReasonError("name")
        if not prefix:
            raise BlankReasonError("prefix")

        reset = values.get("sequence_reset", SequenceReset.DAILY.value)
        if reset not in {r.value for r in SequenceReset}:
            raise UnknownValueError("sequence_reset", reset, list(SequenceReset))
        reset = SequenceReset(reset).value
        status = values.get("status", ConfigStatus.ACTIVE.value)
        if status not in {s.value for s in ConfigStatus}:
            raise UnknownValueError("status", status, list(ConfigStatus))
        status = ConfigStatus(status).value

        sequence_length = int(values.get("sequence_length", 3))
        if sequence_length < 1:
            raise InvalidQuantityError("sequence_length", sequence_length)
        code_length = int(values.get("operation_code_length", 2))
        if code_length < 1:
            raise InvalidQuantityError("operation_code_length", code_length)

        model = BatchNumberConfigModel(
            name=name,
            prefix=prefix,
            operation_type=values.get("operation_type"),
            material_id=values.get("material_id"),
            product_sku=values.get("product_sku"),
            include_operation_code=bool(values.get("include_operation_code", False)),
            operation_code_length=code_length,
            separator=values.get("separator", "-"),
            date_format=values.get("date_format", "yyyyMMdd"),
            include_date=bool(values.get("include_date", True)),
            sequence_length=sequence_length,
            sequence_reset=reset,
            priority=int(values.get("priority", 100)),
            status=status,
            created_by=actor,
        )
        self.session.add(model)
        self.session.flush()
        self.audit.log_create("BatchNumberConfig", model.id, f"Numbering config {name} ({prefix})", actor)
        logger.info(
            "batch_number_config_created",
            extra={"config_name": name, "prefix": prefix, "operation_type": model.operation_type},
        )
        return model

    # ------------------------------------------------------------------
    # Numbers
    # ------------------------------------------------------------------

    def generate(
        self,
        kind: NumberKind | str = NumberKind.PRODUCTION,
        *,
        operation_type: str | None = None,
        product_sku: str | None = None,
        material_id: str | None = None,
        supplier_lot: str | None = None,
        source_batch_number: str | None = None,
        split_index: int = 1,
        on_date: date | None = None,
    ) -> str:
        """Generate the next number for a request, advancing its counter."""
        return self._number(
            NumberKind(kind),
            advance=True,
            operation_type=operation_type,
            product_sku=product_sku,
            material_id=material_id,
            supplier_lot=supplier_lot,
            source_batch_number=source_batch_number,
            split_index=split_index,
            on_date=on_date,
        )

    def preview(
        self,
        kind: NumberKind | str = NumberKind.PRODUCTION,
        *,
        operation_type: str | None = None,
        product_sku: str | None = None,
        material_id: str | None = None,
        supplier_lot: str | None = None,
        source_batch_number: str | None = None,
        split_index: int = 1,
        on_date: date | None = None,
    ) -> str:
        """The number ``generate`` would return next.  Writes nothing."""
        return self._number(
            NumberKind(kind),
            advance=False,
            operation_type=operation_type,
            product_sku=product_sku,
            material_id=material_id,
            supplier_lot=supplier_lot,
            source_batch_number=source_batch_number,
            split_index=split_index,
            on_date=on_date,
        )

    def generate_production_number(
        self,
        operation_type: str,
        product_sku: str | None = None,
        material_id: str | None = None,
    ) -> str:
        return self.generate(
            NumberKind.PRODUCTION,
            operation_type=operation_type,
            product_sku=product_sku,
            material_id=material_id,
        )

    def generate_receipt_number(
        self,
        material_id: str | None,
        supplier_lot: str | None = None,
        on_date: date | None = None,
    ) -> str:
        return self.generate(
            NumberKind.RAW_MATERIAL,
            material_id=material_id,
            supplier_lot=supplier_lot,
            on_date=on_date,
        )

    def generate_split_number(self, source_batch_number: str, split_index: int) -> str:
        return self.generate(
            NumberKind.SPLIT,
            source_batch_number=source_batch_number,
            split_index=split_index,
        )

    def generate_merge_number(self) -> str:
        return self.generate(NumberKind.MERGE)

    def _number(self, kind: NumberKind, *, advance: bool, on_date: date | None, **request) -> str:
        on_date = on_date or self.clock.today()
        now = self.clock.now()
        lot_max_length = self.config.supplier_lot_max_length

        # Caller's pending work is flushed outside the numbering savepoint
        self.session.flush()
        try:
            with self.session.begin_nested():
                plan = self._with_fallback_width(
                    plan_number(
                        kind,
                        self.active_configs(),
                        on_date=on_date,
                        now=now,
                        lot_max_length=lot_max_length,
                        **request,
                    )
                )
                sequence = None
                if plan.uses_sequence:
                    if advance:
                        sequence = self.sequences.next_value(plan.scope, plan.sequence_key, on_date)
                    else:
                        sequence = self.sequences.peek(plan.scope, plan.sequence_key)
        except SQLAlchemyError as exc:
            fallback_request = {k: v for k, v in request.items() if k != "product_sku"}
            plan = self._with_fallback_width(
                fallback_plan(
                    kind, on_date=on_date, now=now, lot_max_length=lot_max_length, **fallback_request
                )
            )
            number = plan.render(1 if plan.uses_sequence else None)
            logger.warning(
                "batch_number_degraded",
                extra={
                    "kind": kind.value,
                    "batch_number": number,
                    "error_type": type(exc).__name__,
                    "operation_type": request.get("operation_type"),
                },
            )
            return number

        number = plan.render(sequence)
        logger.debug(
            "batch_number_previewed" if not advance else "batch_number_generated",
            extra={
                "kind": kind.value,
                "batch_number": number,
                "config_name": plan.config_name,
                "sequence_key": plan.sequence_key,
            },
        )
        return number

    def _with_fallback_width(self, plan: NumberPlan) -> NumberPlan:
        if plan.is_fallback and plan.uses_sequence:
            return replace(plan, sequence_width=self.config.fallback_sequence_width)
        return plan
