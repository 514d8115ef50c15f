"""
Consumption executor: applies a plan to locked, freshly read layers.
"""

import logging
from decimal import Decimal
from typing import List

from ...extensions import db
from ...models import LayerConsumption, LayerStatus, Movement
from ._errors import ConcurrencyConflictError, ValidationError
from ._layer_store import lock_layers
from ._money import quantize_quantity, quantize_unit_cost
from ._planner import ConsumptionPlan

logger = logging.getLogger(__name__)


def _stale_lines(plan: ConsumptionPlan, layers) -> List[dict]:
    stale = []
    for line in plan.lines:
        layer = layers.get(line.layer_id)
        if layer is None:
            stale.append({'layer_id': line.layer_id, 'reason': 'missing'})
            continue
        current = quantize_quantity(layer.remaining_quantity)
        if layer.status != LayerStatus.ACTIVE:
            stale.append({'layer_id': line.layer_id, 'layer_code': layer.display_code,
                          'reason': 'status', 'status': layer.status})
        elif current != line.remaining_before:
            stale.append({'layer_id': line.layer_id, 'layer_code': layer.display_code,
                          'reason': 'remaining_changed', 'planned_remaining': line.remaining_before,
                          'current_remaining': current})
        elif quantize_unit_cost(layer.unit_cost) != quantize_unit_cost(line.unit_cost):
            stale.append({'layer_id': line.layer_id, 'reason': 'unit_cost_changed'})
    return stale


def execute_plan(plan: ConsumptionPlan, movement: Movement) -> List[LayerConsumption]:
    """
    Apply every line of the plan or none of them.

    Layers are re-read under a row lock and checked against the remaining
    quantity the plan was built from before anything is changed. Runs inside
    the caller's transaction; nothing is committed here.
    """
    if movement.id is None:
        raise ValidationError("Movement must be flushed before consumption is recorded")
    if not plan.lines:
        return []

    layers = lock_layers(plan.layer_ids)
    for line in plan.lines:
        layer = layers.get(line.layer_id)
        if layer is not None and layer.sku_id != plan.sku_id:
            raise ValidationError(
                f"Layer {layer.display_code} does not belong to SKU {plan.sku_id}",
                details={'layer_id': layer.id, 'sku_id': plan.sku_id},
            )

    stale = _stale_lines(plan, layers)
    if stale:
        logger.warning("FIFO EXECUTE: stale plan for %s (movement %s): %s", plan.sku_id, movement.id, stale)
        raise ConcurrencyConflictError(
            f"Layers for {plan.sku_id} changed since planning",
            details={'sku_id': plan.sku_id, 'stale_layers': stale},
        )

    consumptions = []
    for line in plan.lines:
        layer = layers[line.layer_id]
        layer.remaining_quantity = line.expected_remaining
        if layer.remaining_quantity == 0:
            layer.status = LayerStatus.EXHAUSTED

        consumption = LayerConsumption(
            movement_id=movement.id,
            layer_id=layer.id,
            quantity=line.quantity,
            unit_cost=Decimal(layer.unit_cost),
            total_cost_cents=line.cost_cents,
        )
        db.session.add(consumption)
        consumptions.append(consumption)

        logger.info(
            "FIFO EXECUTE: %s drew %s from %s @ %s (%s cents), remaining %s",
            movement.movement_type, line.quantity, layer.display_code,
            layer.unit_cost, line.cost_cents, layer.remaining_quantity,
        )

    db.session.flush()
    return consumptions
