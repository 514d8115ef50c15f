"""
Reversal engine.

Every reversal is a compensating transaction: draws are given back to the
exact layers they came from, rows are marked reversed rather than deleted,
and only layers that were never drawn from are removed outright.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func

from ...extensions import db
from ...models import (
    FifoLayer,
    LayerConsumption,
    LayerStatus,
    Movement,
    MovementDeletionAudit,
    MovementType,
    WorkOrder,
    WorkOrderStatus,
)
from ...utils.timezone_utils import TimezoneUtils
from ._errors import (
    LedgerError,
    LedgerIntegrityError,
    NotFoundError,
    ReversalBlockedError,
    ValidationError,
    _jsonable,
)
from ._layer_store import layers_created_by, lock_layers
from ._money import ZERO, quantize_quantity
from ._operation_registry import reversal_strategy

logger = logging.getLogger(__name__)


@dataclass
class ReversalAssessment:
    movement: Movement
    strategy: str
    error: Optional[LedgerError] = None
    created_layers: List[FifoLayer] = field(default_factory=list)
    draws: List[LayerConsumption] = field(default_factory=list)
    carves: List[LayerConsumption] = field(default_factory=list)
    dependents: List[Movement] = field(default_factory=list)
    work_order: Optional[WorkOrder] = None

    @property
    def allowed(self) -> bool:
        return self.error is None

    @property
    def sku_ids(self) -> List[str]:
        skus = {self.movement.sku_id} | {m.sku_id for m in self.dependents}
        return sorted(s for s in skus if s)


def load_movement(movement_id: int) -> Movement:
    movement = db.session.get(Movement, movement_id)
    if movement is None:
        raise NotFoundError(f"Movement {movement_id} not found", details={'movement_id': movement_id})
    return movement


def reversal_lock_keys(movement: Movement) -> List[str]:
    """SKUs whose layers a reversal of this movement may touch."""
    if movement.movement_type != MovementType.PRODUCE or movement.work_order_id is None:
        return [movement.sku_id] if movement.sku_id else []
    rows = (
        db.session.query(Movement.sku_id)
        .filter(Movement.work_order_id == movement.work_order_id, Movement.sku_id.isnot(None))
        .distinct()
        .all()
    )
    return sorted(row[0] for row in rows)


def _live_rows(movement: Movement, *, draws: bool) -> List[LayerConsumption]:
    return [
        c for c in movement.consumptions
        if c.reversed_at is None and (c.carved_from_id is None) == draws
    ]


def _work_order_dependents(work_order_id: int) -> List[Movement]:
    return (
        Movement.query
        .filter(
            Movement.work_order_id == work_order_id,
            Movement.movement_type.in_([MovementType.ISSUE, MovementType.WASTE]),
            Movement.reversed_at.is_(None),
        )
        .order_by(Movement.id.asc())
        .all()
    )


def _produce_for(work_order_id: int) -> Optional[Movement]:
    return (
        Movement.query
        .filter(
            Movement.work_order_id == work_order_id,
            Movement.movement_type == MovementType.PRODUCE,
            Movement.reversed_at.is_(None),
        )
        .first()
    )


def _blocking_details(layers: List[FifoLayer]) -> Optional[Dict]:
    """Describe live draws against layers a reversal would have to delete."""
    if not layers:
        return None
    layer_by_id = {l.id: l for l in layers}
    draws = (
        LayerConsumption.query
        .join(Movement, LayerConsumption.movement_id == Movement.id)
        .filter(
            LayerConsumption.layer_id.in_(list(layer_by_id)),
            LayerConsumption.carved_from_id.is_(None),
            LayerConsumption.reversed_at.is_(None),
        )
        .order_by(LayerConsumption.id.asc())
        .all()
    )
    if not draws:
        return None

    per_layer: Dict[int, Dict] = {}
    movements: Dict[int, Dict] = {}
    work_orders: Dict[int, str] = {}
    for draw in draws:
        layer = layer_by_id[draw.layer_id]
        entry = per_layer.setdefault(layer.id, {
            'layer_id': layer.id,
            'layer_code': layer.display_code,
            'consumed_quantity': ZERO,
            'consumed_value_cents': 0,
        })
        entry['consumed_quantity'] = quantize_quantity(entry['consumed_quantity'] + draw.quantity)
        entry['consumed_value_cents'] += draw.total_cost_cents

        movement = draw.movement
        wo = movement.work_order
        if wo is not None:
            work_orders[wo.id] = wo.display_code
        movements.setdefault(movement.id, {
            'movement_id': movement.id,
            'movement_type': movement.movement_type,
            'sku_id': movement.sku_id,
            'reference': movement.reference,
            'work_order_id': movement.work_order_id,
            'work_order_code': wo.display_code if wo is not None else None,
        })

    return {
        'layers': list(per_layer.values()),
        'movements': list(movements.values()),
        'work_orders': [work_orders[k] for k in sorted(work_orders)],
        'work_order_ids': sorted(work_orders),
    }


def assess_reversal(movement: Movement) -> ReversalAssessment:
    """Work out what reversing a movement would do, without changing anything."""
    if movement.reversed_at is not None:
        return ReversalAssessment(
            movement=movement,
            strategy='none',
            error=ValidationError(
                f"Movement {movement.id} is already reversed",
                details={'movement_id': movement.id, 'reversed_at': movement.reversed_at},
                code='already_reversed',
            ),
        )

    strategy = reversal_strategy(movement)
    if strategy is None:
        return ReversalAssessment(
            movement=movement,
            strategy='none',
            error=ValidationError(
                f"{movement.movement_type} movements cannot be reversed",
                details={'movement_id': movement.id, 'movement_type': movement.movement_type},
                code='unsupported_movement_type',
            ),
        )

    if strategy == 'delete_layers':
        created = layers_created_by(movement.id)
        assessment = ReversalAssessment(movement=movement, strategy=strategy, created_layers=created)
        blocking = _blocking_details(created)
        if blocking:
            codes = ', '.join(blocking['work_orders']) or 'none'
            assessment.error = ReversalBlockedError(
                f"{movement.movement_type} {movement.id} has stock drawn from its layers "
                f"(work orders: {codes})",
                details={'movement_id': movement.id, **blocking},
                code='layers_consumed',
            )
        return assessment

    if strategy == 'restore_draws':
        assessment = ReversalAssessment(movement=movement, strategy=strategy)
        if movement.work_order_id is not None:
            produce = _produce_for(movement.work_order_id)
            wo = movement.work_order
            assessment.error = ReversalBlockedError(
                f"{movement.movement_type} {movement.id} belongs to work order {wo.display_code}; "
                f"reverse its PRODUCE movement instead",
                details={
                    'movement_id': movement.id,
                    'work_orders': [wo.display_code],
                    'work_order_ids': [wo.id],
                    'produce_movement_id': produce.id if produce is not None else None,
                    'movements': [{'movement_id': produce.id, 'movement_type': produce.movement_type}]
                    if produce is not None else [],
                },
                code='owned_by_work_order',
            )
            return assessment
        assessment.draws = _live_rows(movement, draws=True)
        assessment.carves = _live_rows(movement, draws=False)
        return assessment

    # restore_work_order
    assessment = ReversalAssessment(movement=movement, strategy=strategy, work_order=movement.work_order)
    if movement.work_order_id is not None:
        assessment.dependents = _work_order_dependents(movement.work_order_id)
        for dependent in assessment.dependents:
            assessment.draws.extend(_live_rows(dependent, draws=True))
            assessment.carves.extend(_live_rows(dependent, draws=False))
    return assessment


def describe_assessment(assessment: ReversalAssessment) -> Dict:
    movement = assessment.movement
    restored: Dict[int, Decimal] = {}
    for draw in assessment.draws:
        restored[draw.layer_id] = quantize_quantity(restored.get(draw.layer_id, ZERO) + draw.quantity)
    return {
        'movement_id': movement.id,
        'movement_type': movement.movement_type,
        'allowed': assessment.allowed,
        'reason': assessment.error.code if assessment.error else None,
        'message': assessment.error.message if assessment.error else None,
        'blocking': assessment.error.details if assessment.error else None,
        'layers_to_restore': [
            {'layer_id': layer_id, 'quantity': qty} for layer_id, qty in sorted(restored.items())
        ],
        'layers_to_delete': [
            {'layer_id': l.id, 'layer_code': l.display_code, 'quantity': l.original_quantity}
            for l in assessment.created_layers
        ] if assessment.allowed else [],
        'dependent_movements': [m.id for m in assessment.dependents],
        'work_order': assessment.work_order.display_code if assessment.work_order else None,
    }


def _restore_draws(draws: List[LayerConsumption], when) -> List[Dict]:
    layers = lock_layers(d.layer_id for d in draws)
    touched: Dict[int, Dict] = {}
    for draw in sorted(draws, key=lambda d: d.id):
        layer = layers.get(draw.layer_id)
        if layer is None:
            raise LedgerIntegrityError(
                f"Consumption {draw.id} points at missing layer {draw.layer_id}",
                details={'consumption_id': draw.id, 'layer_id': draw.layer_id},
            )
        restored = quantize_quantity(Decimal(layer.remaining_quantity) + Decimal(draw.quantity))
        if restored > quantize_quantity(layer.original_quantity):
            logger.error(
                "REVERSAL: restoring %s to %s would exceed original %s",
                draw.quantity, layer.display_code, layer.original_quantity,
            )
            raise LedgerIntegrityError(
                f"Restoring consumption {draw.id} would push {layer.display_code} above its original quantity",
                details={
                    'consumption_id': draw.id,
                    'layer_id': layer.id,
                    'layer_code': layer.display_code,
                    'remaining_quantity': layer.remaining_quantity,
                    'restoring_quantity': draw.quantity,
                    'original_quantity': layer.original_quantity,
                },
            )
        layer.remaining_quantity = restored
        if layer.status == LayerStatus.EXHAUSTED:
            layer.status = LayerStatus.ACTIVE
        draw.mark_reversed(when)

        entry = touched.setdefault(layer.id, {
            'layer_id': layer.id,
            'layer_code': layer.display_code,
            'sku_id': layer.sku_id,
            'quantity_restored': ZERO,
        })
        entry['quantity_restored'] = quantize_quantity(entry['quantity_restored'] + draw.quantity)
        entry['remaining_quantity'] = layer.remaining_quantity
        entry['status'] = layer.status
        logger.info("REVERSAL: restored %s to %s (now %s)", draw.quantity, layer.display_code, restored)
    return list(touched.values())


def _remove_created_layers(layers: List[FifoLayer]) -> Dict[str, List[Dict]]:
    locked = lock_layers(l.id for l in layers)
    deleted, retired = [], []
    for layer_id in sorted(locked):
        layer = locked[layer_id]
        if quantize_quantity(layer.remaining_quantity) != quantize_quantity(layer.original_quantity):
            raise LedgerIntegrityError(
                f"{layer.display_code} has no live draws but remaining != original",
                details={
                    'layer_id': layer.id,
                    'remaining_quantity': layer.remaining_quantity,
                    'original_quantity': layer.original_quantity,
                },
            )
        summary = {'layer_id': layer.id, 'layer_code': layer.display_code, 'quantity': layer.original_quantity}
        history = db.session.query(func.count(LayerConsumption.id)).filter(
            LayerConsumption.layer_id == layer.id
        ).scalar()
        if history:
            # Reversed draws still reference this layer
            layer.remaining_quantity = ZERO
            layer.status = LayerStatus.REVERSED
            retired.append(summary)
        else:
            db.session.delete(layer)
            deleted.append(summary)
    return {'deleted': deleted, 'retired': retired}


def reverse_movement(movement: Movement) -> Dict:
    """Execute a reversal inside the caller's transaction."""
    assessment = assess_reversal(movement)
    if assessment.error is not None:
        raise assessment.error

    when = TimezoneUtils.utc_now_naive()
    result = {
        'movement_id': movement.id,
        'movement_type': movement.movement_type,
        'restored_layers': [],
        'deleted_layers': [],
        'retired_layers': [],
        'dependent_movements_removed': [],
        'work_order': None,
    }

    if assessment.strategy == 'delete_layers':
        removed = _remove_created_layers(assessment.created_layers)
        result['deleted_layers'] = removed['deleted']
        result['retired_layers'] = removed['retired']
    else:
        result['restored_layers'] = _restore_draws(assessment.draws, when)
        for carve in assessment.carves:
            carve.mark_reversed(when)
        for dependent in assessment.dependents:
            dependent.mark_reversed(when)
            result['dependent_movements_removed'].append(dependent.id)
        if assessment.work_order is not None:
            assessment.work_order.status = WorkOrderStatus.REVERSED
            assessment.work_order.mark_reversed(when)
            result['work_order'] = assessment.work_order.display_code

    movement.mark_reversed(when)
    db.session.flush()

    logger.info(
        "REVERSAL: %s #%s reversed (restored %s layers, removed %s dependents, deleted %s layers)",
        movement.movement_type, movement.id, len(result['restored_layers']),
        len(result['dependent_movements_removed']), len(result['deleted_layers']),
    )
    return result


def record_deletion_audit(movement: Movement, result: Dict, reason: Optional[str] = None,
                          deleted_by: Optional[str] = None) -> MovementDeletionAudit:
    """Snapshot a reversed movement and what its reversal did to the layers."""
    audit = MovementDeletionAudit(
        movement_id=movement.id,
        movement_type=movement.movement_type,
        sku_id=movement.sku_id,
        output_name=movement.output_name,
        quantity=movement.quantity,
        unit_cost=movement.unit_cost,
        total_value_cents=movement.total_value_cents or 0,
        reference=movement.reference,
        occurred_at=movement.occurred_at,
        work_order_id=movement.work_order_id,
        notes=movement.notes,
        deletion_reason=reason,
        deleted_by=deleted_by or 'system',
        deleted_at=movement.reversed_at,
        reversal_details=_jsonable({
            key: result[key]
            for key in ('restored_layers', 'deleted_layers', 'retired_layers',
                        'dependent_movements_removed', 'work_order')
        }),
    )
    db.session.add(audit)
    db.session.flush()
    return audit
