"""
Status vocabularies shared by the domain core and the ORM layer.

ORM columns store the ``.value`` strings; enum members are used everywhere
a comparison or transition is decided.
"""

from enum import Enum


class OperationStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    READY = "READY"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"
    PARTIALLY_CONFIRMED = "PARTIALLY_CONFIRMED"
    CONFIRMED = "CONFIRMED"


class ProcessStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class OrderLineStatus(str, Enum):
    CREATED = "CREATED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class InventoryState(str, Enum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    PRODUCED = "PRODUCED"
    BLOCKED = "BLOCKED"
    ON_HOLD = "ON_HOLD"
    CONSUMED = "CONSUMED"
    SCRAPPED = "SCRAPPED"


class InventoryType(str, Enum):
    RM = "RM"  # raw material
    IM = "IM"  # intermediate
    FG = "FG"  # finished goods
    WIP = "WIP"


class BatchStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    BLOCKED = "BLOCKED"
    QUALITY_PENDING = "QUALITY_PENDING"
    PRODUCED = "PRODUCED"
    SPLIT = "SPLIT"
    CONSUMED = "CONSUMED"
    SCRAPPED = "SCRAPPED"


class BatchCreatedVia(str, Enum):
    PRODUCTION = "PRODUCTION"
    SPLIT = "SPLIT"
    MERGE = "MERGE"
    RECEIPT = "RECEIPT"
    MANUAL = "MANUAL"


class RelationType(str, Enum):
    SPLIT = "SPLIT"
    MERGE = "MERGE"
    TRANSFORM = "TRANSFORM"


class RelationStatus(str, Enum):
    ACTIVE = "ACTIVE"


class AdjustmentType(str, Enum):
    CORRECTION = "CORRECTION"
    INVENTORY_COUNT = "INVENTORY_COUNT"
    DAMAGE = "DAMAGE"
    SCRAP_RECOVERY = "SCRAP_RECOVERY"
    SYSTEM = "SYSTEM"


class AllocationStatus(str, Enum):
    ALLOCATED = "ALLOCATED"
    RELEASED = "RELEASED"


class ConfirmationStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    PARTIALLY_CONFIRMED = "PARTIALLY_CONFIRMED"
    REJECTED = "REJECTED"


class HoldStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RELEASED = "RELEASED"


class HoldEntityType(str, Enum):
    OPERATION = "OPERATION"
    PROCESS = "PROCESS"
    BATCH = "BATCH"
    INVENTORY = "INVENTORY"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    STATUS_CHANGE = "STATUS_CHANGE"


class ConfigStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
