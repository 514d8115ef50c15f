"""
Movement ledger: append-only entries whose values always trace to layer
consumption rows, plus the streaming read side.
"""

import logging
from typing import Iterator, Optional

from flask import current_app

from ...extensions import db
from ...models import Movement, MovementType
from ...utils.timezone_utils import TimezoneUtils
from ._errors import ValidationError
from ._executor import execute_plan
from ._money import line_cost_cents, quantize_quantity, unit_cost_from_cents
from ._operation_registry import get_movement_config
from ._planner import ConsumptionPlan
from ._validation import MovementFilters, parse_request

logger = logging.getLogger(__name__)

_SIGN = {
    MovementType.RECEIVE: 1,
    MovementType.PRODUCE: 1,
    MovementType.ISSUE: -1,
    MovementType.WASTE: -1,
}


def open_movement(
    movement_type: str,
    quantity,
    *,
    sku_id: Optional[str] = None,
    output_name: Optional[str] = None,
    unit: Optional[str] = None,
    reference: Optional[str] = None,
    work_order_id: Optional[int] = None,
    occurred_at=None,
    notes: Optional[str] = None,
) -> Movement:
    """
    Insert a movement with zero value. The value is settled afterwards from
    the consumption rows (or layers) written under it.
    """
    get_movement_config(movement_type)
    if movement_type == MovementType.PRODUCE:
        if not output_name:
            raise ValidationError("PRODUCE movements need an output name")
    elif not sku_id:
        raise ValidationError(f"{movement_type} movements need a SKU")

    quantity = quantize_quantity(quantity)
    sign = _SIGN.get(movement_type)
    if sign is not None:
        quantity = abs(quantity) * sign

    movement = Movement(
        movement_type=movement_type,
        sku_id=sku_id,
        output_name=output_name,
        quantity=quantity,
        unit=unit,
        reference=reference,
        work_order_id=work_order_id,
        occurred_at=TimezoneUtils.to_naive_utc(occurred_at) or TimezoneUtils.utc_now_naive(),
        notes=notes,
        total_value_cents=0,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def settle_movement_value(movement: Movement) -> Movement:
    """Value a movement as the sum of its live consumption rows."""
    total = sum(c.total_cost_cents for c in movement.consumptions if c.reversed_at is None)
    movement.total_value_cents = total
    movement.unit_cost = unit_cost_from_cents(total, movement.quantity)
    return movement


def settle_layer_value(movement: Movement, layers) -> Movement:
    """Value an additive movement from the layers it created."""
    total = sum(line_cost_cents(l.original_quantity, l.unit_cost) for l in layers)
    movement.total_value_cents = total
    movement.unit_cost = layers[0].unit_cost if len(layers) == 1 else unit_cost_from_cents(total, movement.quantity)
    return movement


def settle_produce_value(movement: Movement, net_cents: int) -> Movement:
    if net_cents < 0:
        raise ValidationError(
            "Waste cost exceeds raw cost; net produce cost would be negative",
            details={'net_cents': net_cents},
        )
    movement.total_value_cents = net_cents
    movement.unit_cost = unit_cost_from_cents(net_cents, movement.quantity)
    return movement


def record_movement(
    movement_type: str,
    plan: ConsumptionPlan,
    *,
    reference: Optional[str] = None,
    work_order_id: Optional[int] = None,
    occurred_at=None,
    notes: Optional[str] = None,
    unit: Optional[str] = None,
) -> Movement:
    """
    Open a consuming movement, execute its plan under it and settle its value
    from the consumption rows just written. The caller never supplies a value.
    """
    if not get_movement_config(movement_type)['draws_layers']:
        raise ValidationError(f"{movement_type} movements do not draw from layers")
    if not plan.is_complete:
        raise ValidationError("Only complete plans can be recorded", details={'shortfall': plan.shortfall})

    movement = open_movement(
        movement_type,
        plan.requested_quantity if movement_type != MovementType.ADJUSTMENT else -plan.requested_quantity,
        sku_id=plan.sku_id,
        unit=unit,
        reference=reference,
        work_order_id=work_order_id,
        occurred_at=occurred_at,
        notes=notes,
    )
    execute_plan(plan, movement)
    db.session.refresh(movement, ['consumptions'])
    settle_movement_value(movement)

    logger.info(
        "MOVEMENT: %s #%s %s qty=%s value_cents=%s ref=%s",
        movement_type, movement.id, plan.sku_id, movement.quantity, movement.total_value_cents, reference,
    )
    return movement


def movements_query(filters: MovementFilters):
    query = Movement.query
    if filters.date_from is not None:
        query = query.filter(Movement.occurred_at >= TimezoneUtils.to_naive_utc(filters.date_from))
    if filters.date_to is not None:
        query = query.filter(Movement.occurred_at < TimezoneUtils.to_naive_utc(filters.date_to))
    if filters.movement_type:
        query = query.filter(Movement.movement_type == filters.movement_type)
    if filters.sku_id:
        query = query.filter(Movement.sku_id == filters.sku_id)
    if filters.reference:
        query = query.filter(Movement.reference == filters.reference)
    if filters.work_order_id is not None:
        query = query.filter(Movement.work_order_id == filters.work_order_id)
    if not filters.include_reversed:
        query = query.filter(Movement.reversed_at.is_(None))
    return query.order_by(Movement.occurred_at.asc(), Movement.id.asc())


def list_movements(filters=None) -> Iterator[Movement]:
    """Stream movements matching the filters, oldest first."""
    filters = parse_request(MovementFilters, filters)
    page_size = int(current_app.config.get('LEDGER_LIST_PAGE_SIZE', 500))
    yield from movements_query(filters).yield_per(page_size)
