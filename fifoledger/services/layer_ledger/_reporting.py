"""
Read-side projections over the ledger. Nothing here writes.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from sqlalchemy import func, or_

from ...extensions import db
from ...models import SKU, FifoLayer, LayerConsumption, LayerStatus, Movement, MovementType
from ...utils.timezone_utils import TimezoneUtils
from ._errors import ValidationError
from ._layer_store import average_cost, get_sku, layers_for, on_hand_layers
from ._money import ZERO, cents_to_decimal, line_cost_cents, quantize_quantity

RATIO_PLACES = Decimal('0.0001')
COGS_MOVEMENT_TYPES = (MovementType.ISSUE, MovementType.WASTE, MovementType.ADJUSTMENT)


def current_layers(sku_id: str, include_exhausted: bool = False) -> List[Dict]:
    """Layers of one SKU in draw order."""
    get_sku(sku_id)
    return [layer.to_dict() for layer in layers_for(sku_id, include_exhausted=include_exhausted)]


def _layer_value_cents(layers) -> int:
    return sum(line_cost_cents(l.remaining_quantity, l.unit_cost) for l in layers)


def inventory_summary() -> List[Dict]:
    summary = []
    for sku in SKU.query.order_by(SKU.id.asc()):
        layers = on_hand_layers(sku.id)
        on_hand = quantize_quantity(sum((Decimal(l.remaining_quantity) for l in layers), ZERO))
        available = quantize_quantity(sum(
            (Decimal(l.remaining_quantity) for l in layers if l.status == LayerStatus.ACTIVE), ZERO
        ))
        value_cents = _layer_value_cents(layers)
        summary.append({
            'sku_id': sku.id,
            'description': sku.description,
            'material_type': sku.material_type,
            'unit': sku.unit,
            'on_hand_quantity': on_hand,
            'available_quantity': available,
            'average_cost': average_cost(layers),
            'value_cents': value_cents,
            'value': cents_to_decimal(value_cents),
            'min_stock': sku.min_stock,
            'below_minimum': on_hand < Decimal(sku.min_stock or 0),
            'layer_count': len(layers),
        })
    return summary


def cost_of_goods_consumed_cents(date_from: datetime, date_to: datetime, sku_id: Optional[str] = None) -> int:
    """Live draw cost of ISSUE/WASTE/ADJUSTMENT movements in [date_from, date_to)."""
    query = (
        db.session.query(func.coalesce(func.sum(LayerConsumption.total_cost_cents), 0))
        .join(Movement, LayerConsumption.movement_id == Movement.id)
        .filter(
            Movement.movement_type.in_(COGS_MOVEMENT_TYPES),
            Movement.occurred_at >= TimezoneUtils.to_naive_utc(date_from),
            Movement.occurred_at < TimezoneUtils.to_naive_utc(date_to),
            LayerConsumption.carved_from_id.is_(None),
            LayerConsumption.reversed_at.is_(None),
        )
    )
    if sku_id:
        query = query.filter(Movement.sku_id == sku_id)
    return int(query.scalar() or 0)


def inventory_value_cents_at(instant: datetime, sku_id: Optional[str] = None) -> int:
    """Value of stock on hand at an instant, rebuilt from layers and draws."""
    instant = TimezoneUtils.to_naive_utc(instant)
    layer_query = (
        FifoLayer.query
        .join(Movement, FifoLayer.source_movement_id == Movement.id)
        .filter(
            FifoLayer.received_at <= instant,
            or_(Movement.reversed_at.is_(None), Movement.reversed_at > instant),
        )
    )
    if sku_id:
        layer_query = layer_query.filter(FifoLayer.sku_id == sku_id)
    layers = layer_query.all()
    if not layers:
        return 0

    drawn_rows = (
        db.session.query(LayerConsumption.layer_id, func.sum(LayerConsumption.quantity))
        .join(Movement, LayerConsumption.movement_id == Movement.id)
        .filter(
            LayerConsumption.layer_id.in_([l.id for l in layers]),
            LayerConsumption.carved_from_id.is_(None),
            Movement.occurred_at <= instant,
            or_(LayerConsumption.reversed_at.is_(None), LayerConsumption.reversed_at > instant),
        )
        .group_by(LayerConsumption.layer_id)
        .all()
    )
    drawn = {layer_id: quantize_quantity(total or 0) for layer_id, total in drawn_rows}

    total = 0
    for layer in layers:
        remaining = quantize_quantity(Decimal(layer.original_quantity) - drawn.get(layer.id, ZERO))
        if remaining > 0:
            total += line_cost_cents(remaining, layer.unit_cost)
    return total


def _ratio(numerator, denominator) -> Optional[Decimal]:
    if denominator is None or denominator == 0:
        return None
    return (Decimal(numerator) / Decimal(denominator)).quantize(RATIO_PLACES, rounding=ROUND_HALF_UP)


def inventory_kpis(date_from: datetime, date_to: datetime, sku_id: Optional[str] = None) -> Dict:
    """
    Turnover = COGS / average(value at start, value at end).
    Days of inventory = value at end / (COGS per day over the period).
    Undefined ratios come back as None.
    """
    date_from = TimezoneUtils.to_naive_utc(date_from)
    date_to = TimezoneUtils.to_naive_utc(date_to)
    if date_from is None or date_to is None or date_to <= date_from:
        raise ValidationError("KPI period needs date_from before date_to",
                              details={'date_from': date_from, 'date_to': date_to})

    cogs = cost_of_goods_consumed_cents(date_from, date_to, sku_id)
    start_value = inventory_value_cents_at(date_from, sku_id)
    end_value = inventory_value_cents_at(date_to, sku_id)
    average_value = Decimal(start_value + end_value) / 2
    days = Decimal(str((date_to - date_from).total_seconds())) / Decimal(86400)
    daily_cogs = Decimal(cogs) / days if cogs else None

    return {
        'date_from': date_from,
        'date_to': date_to,
        'sku_id': sku_id,
        'period_days': days.quantize(RATIO_PLACES, rounding=ROUND_HALF_UP),
        'cogs_cents': cogs,
        'cogs': cents_to_decimal(cogs),
        'start_value_cents': start_value,
        'end_value_cents': end_value,
        'average_inventory_value': (average_value / 100).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP),
        'turnover': _ratio(cogs, average_value),
        'days_of_inventory': _ratio(end_value, daily_cogs),
    }
