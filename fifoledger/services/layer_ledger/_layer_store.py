"""
Layer store: creation of cost layers, the canonical FIFO ordering, and the
SKU on-hand / average-cost caches derived from it.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func

from ...extensions import db
from ...models import SKU, FifoLayer, LayerConsumption, LayerStatus, Movement
from ...utils.code_generator import generate_layer_code
from ...utils.timezone_utils import TimezoneUtils
from ._errors import NotFoundError, ValidationError
from ._money import ZERO, quantize_quantity, quantize_unit_cost

logger = logging.getLogger(__name__)


def get_sku(sku_id: str, *, require_active: bool = False) -> SKU:
    sku = db.session.get(SKU, sku_id)
    if sku is None:
        raise NotFoundError(f"SKU {sku_id} not found", details={'sku_id': sku_id})
    if require_active and not sku.is_active:
        raise ValidationError(f"SKU {sku_id} is inactive", details={'sku_id': sku_id}, code='sku_inactive')
    return sku


def draw_order():
    """FIFO draw order: receiving date, then creation order."""
    return (FifoLayer.received_at.asc(), FifoLayer.id.asc())


def ordered_layers_query(sku_id: str, statuses: Optional[Sequence[str]] = None):
    query = FifoLayer.query.filter(FifoLayer.sku_id == sku_id)
    if statuses:
        query = query.filter(FifoLayer.status.in_(list(statuses)))
    return query.order_by(*draw_order())


def layers_for(sku_id: str, *, include_exhausted: bool = True, statuses: Optional[Sequence[str]] = None) -> List[FifoLayer]:
    """Every layer of a SKU, oldest first."""
    if statuses is None:
        statuses = [s for s in LayerStatus.ALL if s != LayerStatus.REVERSED]
        if not include_exhausted:
            statuses.remove(LayerStatus.EXHAUSTED)
    return ordered_layers_query(sku_id, statuses).all()


def drawable_layers(sku_id: str) -> List[FifoLayer]:
    return (
        ordered_layers_query(sku_id, [LayerStatus.ACTIVE])
        .filter(FifoLayer.remaining_quantity > 0)
        .all()
    )


def lock_layers(layer_ids: Iterable[int]) -> Dict[int, FifoLayer]:
    """Row-lock layers and refresh them from the database before mutation."""
    ids = sorted(set(layer_ids))
    if not ids:
        return {}
    rows = (
        FifoLayer.query
        .filter(FifoLayer.id.in_(ids))
        .order_by(FifoLayer.id.asc())
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {layer.id: layer for layer in rows}


def add_layer(
    sku: SKU,
    quantity,
    unit_cost,
    received_at=None,
    *,
    source_movement: Movement,
    expiration_date=None,
    vendor_ref: Optional[str] = None,
) -> FifoLayer:
    """Create an ACTIVE layer. The caller owns the transaction."""
    quantity = quantize_quantity(quantity)
    unit_cost = quantize_unit_cost(unit_cost)
    if quantity <= 0:
        raise ValidationError("Layer quantity must be greater than zero", details={'quantity': quantity})
    if unit_cost < 0:
        raise ValidationError("Layer unit cost cannot be negative", details={'unit_cost': unit_cost})

    layer = FifoLayer(
        sku_id=sku.id,
        source_movement_id=source_movement.id,
        received_at=TimezoneUtils.to_naive_utc(received_at) or TimezoneUtils.utc_now_naive(),
        original_quantity=quantity,
        remaining_quantity=quantity,
        unit_cost=unit_cost,
        status=LayerStatus.ACTIVE,
        expiration_date=TimezoneUtils.to_naive_utc(expiration_date),
        vendor_ref=vendor_ref,
    )
    db.session.add(layer)
    db.session.flush()
    layer.code = generate_layer_code(layer.id)

    logger.info(
        "LAYER: created %s for %s qty=%s unit_cost=%s (movement %s)",
        layer.code, sku.id, quantity, unit_cost, source_movement.id,
    )
    return layer


def average_cost(layers: Iterable[FifoLayer]) -> Optional[Decimal]:
    """Weighted average of remaining stock; None when nothing remains."""
    total_qty = ZERO
    total_value = ZERO
    for layer in layers:
        remaining = Decimal(layer.remaining_quantity)
        total_qty += remaining
        total_value += remaining * Decimal(layer.unit_cost)
    if total_qty == 0:
        return None
    return quantize_unit_cost(total_value / total_qty)


def on_hand_layers(sku_id: str) -> List[FifoLayer]:
    return (
        ordered_layers_query(sku_id, LayerStatus.ON_HAND)
        .filter(FifoLayer.remaining_quantity > 0)
        .all()
    )


def refresh_sku_cache(sku_id: str) -> SKU:
    sku = get_sku(sku_id)
    layers = on_hand_layers(sku_id)
    sku.on_hand_quantity = quantize_quantity(sum((Decimal(l.remaining_quantity) for l in layers), ZERO))
    sku.average_cost = average_cost(layers)
    logger.debug("LAYER: %s cache on_hand=%s avg_cost=%s", sku_id, sku.on_hand_quantity, sku.average_cost)
    return sku


def active_draw_totals(layer_ids: Iterable[int]) -> Dict[int, Decimal]:
    """Sum of live draw quantities per layer (carve-outs and reversed rows excluded)."""
    ids = list(set(layer_ids))
    if not ids:
        return {}
    rows = (
        db.session.query(LayerConsumption.layer_id, func.sum(LayerConsumption.quantity))
        .filter(
            LayerConsumption.layer_id.in_(ids),
            LayerConsumption.carved_from_id.is_(None),
            LayerConsumption.reversed_at.is_(None),
        )
        .group_by(LayerConsumption.layer_id)
        .all()
    )
    totals = {layer_id: ZERO for layer_id in ids}
    for layer_id, total in rows:
        totals[layer_id] = quantize_quantity(total or 0)
    return totals


def layers_created_by(movement_id: int) -> List[FifoLayer]:
    return (
        FifoLayer.query
        .filter(FifoLayer.source_movement_id == movement_id)
        .order_by(*draw_order())
        .all()
    )
