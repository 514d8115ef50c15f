"""
FIFO planner. Plans are computed from a snapshot of layers and never touch
stored state, so they can be built speculatively for previews.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from ._errors import ValidationError
from ._layer_store import drawable_layers
from ._money import ZERO, line_cost_cents, quantize_quantity


@dataclass(frozen=True)
class PlanLine:
    layer_id: int
    layer_code: str
    quantity: Decimal
    unit_cost: Decimal
    remaining_before: Decimal
    cost_cents: int

    @property
    def expected_remaining(self) -> Decimal:
        return quantize_quantity(self.remaining_before - self.quantity)

    def to_dict(self):
        return {
            'layer_id': self.layer_id,
            'layer_code': self.layer_code,
            'quantity': self.quantity,
            'unit_cost': self.unit_cost,
            'remaining_before': self.remaining_before,
            'cost_cents': self.cost_cents,
        }


@dataclass(frozen=True)
class ConsumptionPlan:
    sku_id: str
    requested_quantity: Decimal
    lines: Tuple[PlanLine, ...] = field(default_factory=tuple)

    @property
    def planned_quantity(self) -> Decimal:
        return quantize_quantity(sum((line.quantity for line in self.lines), ZERO))

    @property
    def shortfall(self) -> Decimal:
        return quantize_quantity(max(self.requested_quantity - self.planned_quantity, ZERO))

    @property
    def is_complete(self) -> bool:
        return self.shortfall == 0

    @property
    def total_cost_cents(self) -> int:
        return sum(line.cost_cents for line in self.lines)

    @property
    def layer_ids(self) -> List[int]:
        return [line.layer_id for line in self.lines]

    def to_dict(self):
        return {
            'sku_id': self.sku_id,
            'requested_quantity': self.requested_quantity,
            'planned_quantity': self.planned_quantity,
            'shortfall': self.shortfall,
            'is_complete': self.is_complete,
            'total_cost_cents': self.total_cost_cents,
            'lines': [line.to_dict() for line in self.lines],
        }


def _check_requested(requested) -> Decimal:
    try:
        requested = quantize_quantity(requested)
    except ValueError as exc:
        raise ValidationError(str(exc), details={'requested_quantity': requested}) from exc
    if requested < 0:
        raise ValidationError("Requested quantity cannot be negative", details={'requested_quantity': requested})
    return requested


def build_plan(sku_id: str, requested, layers: Iterable) -> ConsumptionPlan:
    """
    Greedy oldest-first walk over already-ordered layers.

    Takes min(remaining, still needed) from each drawable layer and stops when
    the request is met or layers run out. A short plan is returned as-is.
    """
    requested = _check_requested(requested)
    still_needed = requested
    lines: List[PlanLine] = []

    for layer in layers:
        if still_needed <= 0:
            break
        if not layer.is_drawable:
            continue
        remaining = quantize_quantity(layer.remaining_quantity)
        take = min(remaining, still_needed)
        lines.append(PlanLine(
            layer_id=layer.id,
            layer_code=layer.display_code,
            quantity=take,
            unit_cost=Decimal(layer.unit_cost),
            remaining_before=remaining,
            cost_cents=line_cost_cents(take, layer.unit_cost),
        ))
        still_needed = quantize_quantity(still_needed - take)

    return ConsumptionPlan(sku_id=sku_id, requested_quantity=requested, lines=tuple(lines))


def plan_consumption(sku_id: str, requested) -> ConsumptionPlan:
    """Plan a draw against the SKU's current drawable layers."""
    requested = _check_requested(requested)
    if requested == 0:
        return ConsumptionPlan(sku_id=sku_id, requested_quantity=requested)
    return build_plan(sku_id, requested, drawable_layers(sku_id))


def plan_from_layer(layer, requested) -> ConsumptionPlan:
    """Plan a draw against one named layer, ignoring FIFO order."""
    return build_plan(layer.sku_id, requested, [layer])


@dataclass(frozen=True)
class CarveSource:
    layer_id: int
    layer_code: str
    quantity: Decimal
    unit_cost: Decimal
    consumption_id: Optional[int] = None


@dataclass(frozen=True)
class CarveLine:
    source: CarveSource
    quantity: Decimal
    cost_cents: int

    def to_dict(self):
        return {
            'layer_id': self.source.layer_id,
            'layer_code': self.source.layer_code,
            'carved_from_id': self.source.consumption_id,
            'quantity': self.quantity,
            'unit_cost': self.source.unit_cost,
            'cost_cents': self.cost_cents,
        }


def carve_out(sources: Sequence[CarveSource], quantity) -> List[CarveLine]:
    """
    Attribute `quantity` of waste to lines that were already drawn, oldest
    first, at their recorded unit costs. Nothing is re-planned against the store.
    """
    quantity = _check_requested(quantity)
    available = quantize_quantity(sum((s.quantity for s in sources), ZERO))
    if quantity > available:
        raise ValidationError(
            "Waste quantity exceeds the quantity drawn for it",
            details={'waste_quantity': quantity, 'drawn_quantity': available},
        )

    still_needed = quantity
    lines: List[CarveLine] = []
    for source in sources:
        if still_needed <= 0:
            break
        take = min(source.quantity, still_needed)
        lines.append(CarveLine(source=source, quantity=take, cost_cents=line_cost_cents(take, source.unit_cost)))
        still_needed = quantize_quantity(still_needed - take)
    return lines


def carve_sources_from_plan(plan: ConsumptionPlan) -> List[CarveSource]:
    return [
        CarveSource(layer_id=l.layer_id, layer_code=l.layer_code, quantity=l.quantity, unit_cost=l.unit_cost)
        for l in plan.lines
    ]


def carve_sources_from_consumptions(consumptions) -> List[CarveSource]:
    return [
        CarveSource(
            layer_id=c.layer_id,
            layer_code=c.layer.display_code,
            quantity=quantize_quantity(c.quantity),
            unit_cost=Decimal(c.unit_cost),
            consumption_id=c.id,
        )
        for c in sorted(consumptions, key=lambda c: c.id)
        if c.is_draw and c.reversed_at is None
    ]
