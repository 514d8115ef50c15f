"""
Integrity verification. Checks recompute everything from consumption rows
and report mismatches; they never repair anything.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from ...models import SKU, FifoLayer, LayerStatus, Movement, MovementType, WorkOrder, WorkOrderStatus
from ._errors import LedgerIntegrityError
from ._layer_store import active_draw_totals, on_hand_layers
from ._money import ZERO, quantize_quantity

logger = logging.getLogger(__name__)


def _issue(kind: str, message: str, **context) -> Dict:
    return {'kind': kind, 'message': message, **context}


def verify_layer(layer: FifoLayer, drawn: Optional[Decimal] = None) -> List[Dict]:
    issues = []
    original = quantize_quantity(layer.original_quantity)
    remaining = quantize_quantity(layer.remaining_quantity)
    if drawn is None:
        drawn = active_draw_totals([layer.id]).get(layer.id, ZERO)

    if remaining < 0 or remaining > original:
        issues.append(_issue(
            'layer_bounds', f"{layer.display_code} remaining {remaining} outside 0..{original}",
            layer_id=layer.id, remaining=remaining, original=original,
        ))
    expected = ZERO if layer.status == LayerStatus.REVERSED else quantize_quantity(original - drawn)
    if remaining != expected:
        issues.append(_issue(
            'layer_balance', f"{layer.display_code} remaining {remaining} != original - draws ({expected})",
            layer_id=layer.id, remaining=remaining, expected=expected, drawn=drawn,
        ))
    if layer.status == LayerStatus.EXHAUSTED and remaining != 0:
        issues.append(_issue('layer_status', f"{layer.display_code} EXHAUSTED with stock left", layer_id=layer.id))
    if layer.status == LayerStatus.ACTIVE and remaining == 0:
        issues.append(_issue('layer_status', f"{layer.display_code} ACTIVE with no stock", layer_id=layer.id))
    return issues


def verify_movement(movement: Movement) -> List[Dict]:
    """Movement value must equal the cost of the live rows it owns."""
    if movement.reversed_at is not None:
        return []
    if movement.movement_type not in (MovementType.ISSUE, MovementType.WASTE, MovementType.ADJUSTMENT):
        return []
    if movement.movement_type == MovementType.ADJUSTMENT and movement.quantity > 0:
        return []

    rows = [c for c in movement.consumptions if c.reversed_at is None]
    traced = sum(c.total_cost_cents for c in rows)
    issues = []
    if traced != movement.total_value_cents:
        issues.append(_issue(
            'movement_value',
            f"{movement.movement_type} #{movement.id} value {movement.total_value_cents} != consumption cost {traced}",
            movement_id=movement.id, expected_cents=traced, actual_cents=movement.total_value_cents,
        ))
    traced_qty = quantize_quantity(sum((Decimal(c.quantity) for c in rows), ZERO))
    if traced_qty != quantize_quantity(abs(movement.quantity)):
        issues.append(_issue(
            'movement_quantity',
            f"{movement.movement_type} #{movement.id} quantity {movement.quantity} != consumed {traced_qty}",
            movement_id=movement.id, expected=traced_qty, actual=movement.quantity,
        ))
    return issues


def work_order_issues(work_order: WorkOrder) -> List[Dict]:
    if work_order.status == WorkOrderStatus.REVERSED:
        return []
    issues_found = []
    issue_movements = work_order.movements_of_type(MovementType.ISSUE)
    wastes = work_order.movements_of_type(MovementType.WASTE)
    produces = work_order.movements_of_type(MovementType.PRODUCE)

    for movement in issue_movements + wastes:
        issues_found.extend(verify_movement(movement))

    raw_cents = sum(m.total_value_cents for m in issue_movements)
    waste_cents = sum(m.total_value_cents for m in wastes)
    net_cents = raw_cents - waste_cents
    code = work_order.display_code

    if len(produces) != 1:
        issues_found.append(_issue('work_order_produce', f"{code} has {len(produces)} live PRODUCE movements",
                                   work_order_id=work_order.id))
    elif produces[0].total_value_cents != net_cents:
        issues_found.append(_issue(
            'work_order_produce_value',
            f"{code} PRODUCE value {produces[0].total_value_cents} != raw - waste ({net_cents})",
            work_order_id=work_order.id, expected_cents=net_cents, actual_cents=produces[0].total_value_cents,
        ))
    for label, stored, expected in (
        ('total_raw_cost_cents', work_order.total_raw_cost_cents, raw_cents),
        ('total_waste_cost_cents', work_order.total_waste_cost_cents, waste_cents),
        ('net_produce_cost_cents', work_order.net_produce_cost_cents, net_cents),
    ):
        if stored != expected:
            issues_found.append(_issue('work_order_totals', f"{code} {label} {stored} != {expected}",
                                       work_order_id=work_order.id, field=label,
                                       expected_cents=expected, actual_cents=stored))
    return issues_found


def verify_work_order_integrity(work_order: WorkOrder) -> None:
    """Raise LedgerIntegrityError when a work order's costs do not reconcile."""
    issues = work_order_issues(work_order)
    if issues:
        logger.error("INTEGRITY: %s failed verification: %s", work_order.display_code, issues)
        raise LedgerIntegrityError(
            f"Work order {work_order.display_code} failed cost verification",
            details={'work_order_id': work_order.id, 'issues': issues},
        )


def verify_sku_cache(sku: SKU) -> List[Dict]:
    on_hand = quantize_quantity(sum((Decimal(l.remaining_quantity) for l in on_hand_layers(sku.id)), ZERO))
    if quantize_quantity(sku.on_hand_quantity) != on_hand:
        return [_issue('sku_cache', f"{sku.id} cached on hand {sku.on_hand_quantity} != layers {on_hand}",
                       sku_id=sku.id, expected=on_hand, actual=sku.on_hand_quantity)]
    return []


def collect_integrity_issues(sku_id: Optional[str] = None) -> List[Dict]:
    """Scan layers, movements and work orders (optionally for one SKU)."""
    issues: List[Dict] = []

    layer_query = FifoLayer.query
    sku_query = SKU.query
    movement_query = Movement.query.filter(Movement.reversed_at.is_(None))
    if sku_id:
        layer_query = layer_query.filter(FifoLayer.sku_id == sku_id)
        sku_query = sku_query.filter(SKU.id == sku_id)
        movement_query = movement_query.filter(Movement.sku_id == sku_id)

    layers = layer_query.order_by(FifoLayer.id.asc()).all()
    drawn = active_draw_totals(l.id for l in layers)
    for layer in layers:
        issues.extend(verify_layer(layer, drawn.get(layer.id, ZERO)))

    work_order_ids = set()
    for movement in movement_query.order_by(Movement.id.asc()):
        if movement.work_order_id is not None:
            work_order_ids.add(movement.work_order_id)
        else:
            issues.extend(verify_movement(movement))

    wo_query = WorkOrder.query.filter(WorkOrder.status == WorkOrderStatus.COMPLETED)
    if sku_id:
        wo_query = wo_query.filter(WorkOrder.id.in_(sorted(work_order_ids) or [-1]))
    for work_order in wo_query.order_by(WorkOrder.id.asc()):
        issues.extend(work_order_issues(work_order))

    for sku in sku_query.order_by(SKU.id.asc()):
        issues.extend(verify_sku_cache(sku))

    if issues:
        logger.error("INTEGRITY: %s issue(s) found%s", len(issues), f" for {sku_id}" if sku_id else "")
    return issues
