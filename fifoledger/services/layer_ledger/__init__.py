"""
FIFO Layer Ledger - canonical entry point

Every change to layer quantities goes through this package: receiving,
single-SKU consumption, work orders, adjustments and reversals. Callers get
LedgerResult values back; LedgerIntegrityError is the only exception that
escapes on purpose.
"""

from ._errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    LedgerError,
    LedgerIntegrityError,
    NotFoundError,
    ReversalBlockedError,
    ValidationError,
)
from ._executor import execute_plan
from ._integrity import collect_integrity_issues, verify_work_order_integrity
from ._layer_store import add_layer, average_cost, layers_for, refresh_sku_cache
from ._lifecycle import expire_layers, quarantine_layer, release_layer
from ._movements import list_movements, record_movement
from ._operation_registry import MOVEMENT_REGISTRY, get_supported_movement_types
from ._operations import (
    adjust_layer,
    check_movement_deletion,
    delete_movement,
    issue_or_waste,
    validate_bulk_deletion,
)
from ._planner import ConsumptionPlan, PlanLine, plan_consumption
from ._receiving import create_receiving
from ._reporting import (
    cost_of_goods_consumed_cents,
    current_layers,
    inventory_kpis,
    inventory_summary,
    inventory_value_cents_at,
)
from ._results import LedgerResult
from ._work_orders import preview_work_order, process_work_order

__all__ = [
    # results and errors
    'LedgerResult',
    'LedgerError',
    'ValidationError',
    'NotFoundError',
    'InsufficientStockError',
    'ConcurrencyConflictError',
    'ReversalBlockedError',
    'LedgerIntegrityError',
    # layer store / planner / executor
    'add_layer',
    'layers_for',
    'average_cost',
    'refresh_sku_cache',
    'plan_consumption',
    'ConsumptionPlan',
    'PlanLine',
    'execute_plan',
    # movement ledger
    'record_movement',
    'list_movements',
    # inbound operations
    'create_receiving',
    'issue_or_waste',
    'process_work_order',
    'preview_work_order',
    'adjust_layer',
    'delete_movement',
    'check_movement_deletion',
    'validate_bulk_deletion',
    'expire_layers',
    'quarantine_layer',
    'release_layer',
    # read side
    'current_layers',
    'inventory_summary',
    'inventory_kpis',
    'cost_of_goods_consumed_cents',
    'inventory_value_cents_at',
    # integrity
    'verify_integrity',
    'verify_work_order_integrity',
    'collect_integrity_issues',
    'MOVEMENT_REGISTRY',
    'get_supported_movement_types',
]


def verify_integrity(sku_id=None):
    """Return (is_valid, issues) for the whole ledger or one SKU."""
    issues = collect_integrity_issues(sku_id)
    return not issues, issues
