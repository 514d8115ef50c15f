"""Models package - imports all ledger models so Alembic sees every table"""
from ..extensions import db
from .sku import SKU, MaterialType
from .work_order import WorkOrder, WorkOrderStatus
from .movement import Movement, MovementType
from .layer import FifoLayer, LayerStatus
from .layer_consumption import LayerConsumption
from .movement_deletion_audit import MovementDeletionAudit

__all__ = [
    'db',
    'SKU',
    'MaterialType',
    'WorkOrder',
    'WorkOrderStatus',
    'Movement',
    'MovementType',
    'FifoLayer',
    'LayerStatus',
    'LayerConsumption',
    'MovementDeletionAudit',
]
