"""
Batch genealogy queries.

One hop in each direction: the direct parents and children of a batch over
SPLIT, MERGE and TRANSFORM relations, plus the production context (operation,
process, order line) when the batch was generated by an operation.  Callers
walk the transitive closure hop by hop.
"""

from uuid import UUID

from sqlalchemy import select

from mes_kernel.domain.dtos import BatchGenealogy, GenealogyLink, ProductionInfo
from mes_kernel.domain.statuses import RelationType
from mes_kernel.exceptions import BatchNotFoundError
from mes_kernel.models.batch import BatchModel, BatchRelationModel
from mes_kernel.models.process import OperationModel, OrderLineModel, ProcessModel
from mes_kernel.selectors.base import BaseSelector


class GenealogySelector(BaseSelector):
    """Read side of batch genealogy."""

    def get_genealogy(self, batch_id: UUID) -> BatchGenealogy:
        """
        Batch, direct parents, direct children and production context.

        A batch without relations yields empty parent/child tuples.

        Raises:
            BatchNotFoundError: if the batch does not exist.
        """
        batch = self.session.get(BatchModel, batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)

        return BatchGenealogy(
            batch=batch.to_dto(),
            parents=self.parents_of(batch_id),
            children=self.children_of(batch_id),
            production_info=self.production_info(batch),
        )

    def parents_of(
        self, batch_id: UUID, relation_type: RelationType | None = None
    ) -> tuple[GenealogyLink, ...]:
        stmt = (
            select(BatchRelationModel, BatchModel)
            .join(BatchModel, BatchModel.id == BatchRelationModel.parent_batch_id)
            .where(BatchRelationModel.child_batch_id == batch_id)
            .order_by(BatchRelationModel.created_at, BatchModel.batch_number)
        )
        if relation_type is not None:
            stmt = stmt.where(BatchRelationModel.relation_type == relation_type.value)
        return tuple(self._link(rel, batch) for rel, batch in self.session.execute(stmt))

    def children_of(
        self, batch_id: UUID, relation_type: RelationType | None = None
    ) -> tuple[GenealogyLink, ...]:
        stmt = (
            select(BatchRelationModel, BatchModel)
            .join(BatchModel, BatchModel.id == BatchRelationModel.child_batch_id)
            .where(BatchRelationModel.parent_batch_id == batch_id)
            .order_by(BatchRelationModel.created_at, BatchModel.batch_number)
        )
        if relation_type is not None:
            stmt = stmt.where(BatchRelationModel.relation_type == relation_type.value)
        return tuple(self._link(rel, batch) for rel, batch in self.session.execute(stmt))

    def count_children(self, batch_id: UUID, relation_type: RelationType) -> int:
        return len(
            self.session.scalars(
                select(BatchRelationModel.id).where(
                    BatchRelationModel.parent_batch_id == batch_id,
                    BatchRelationModel.relation_type == relation_type.value,
                )
            ).all()
        )

    def production_info(self, batch: BatchModel) -> ProductionInfo | None:
        if batch.generated_at_operation_id is None:
            return None
        operation = self.session.get(OperationModel, batch.generated_at_operation_id)
        if operation is None:
            return None

        process = self.session.get(ProcessModel, operation.process_id)
        order_line = self.session.get(OrderLineModel, operation.order_line_id)
        return ProductionInfo(
            operation_id=operation.id,
            operation_name=operation.name,
            operation_type=operation.operation_type,
            process_id=process.id if process else None,
            process_name=process.name if process else None,
            order_line_id=order_line.id if order_line else None,
            order_reference=order_line.order_reference if order_line else None,
            production_date=batch.created_at,
        )

    @staticmethod
    def _link(relation: BatchRelationModel, batch: BatchModel) -> GenealogyLink:
        return GenealogyLink(
            batch=batch.to_dto(),
            relation_id=relation.id,
            relation_type=RelationType(relation.relation_type),
            quantity_consumed=relation.quantity_consumed,
        )
