"""
Work order orchestrator: multi-SKU FIFO consumption with a waste offset,
committed all-or-nothing and safe to resubmit under the same reference.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from ...extensions import db
from ...models import LayerConsumption, Movement, MovementType, WorkOrder, WorkOrderStatus
from ...utils.code_generator import generate_work_order_code
from ._errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    LedgerError,
    LedgerIntegrityError,
    ValidationError,
)
from ._integrity import verify_work_order_integrity
from ._layer_store import get_sku, refresh_sku_cache
from ._money import cents_to_decimal, quantize_quantity, unit_cost_from_cents
from ._movements import open_movement, record_movement, settle_movement_value, settle_produce_value
from ._planner import carve_out, carve_sources_from_consumptions, carve_sources_from_plan, plan_consumption
from ._results import LedgerResult
from ._retry import run_ledger_transaction
from ._validation import WorkOrderRequest, parse_request

logger = logging.getLogger(__name__)


def find_work_order_by_reference(reference: Optional[str]) -> Optional[WorkOrder]:
    if not reference:
        return None
    return (
        WorkOrder.query
        .filter(WorkOrder.reference == reference, WorkOrder.status == WorkOrderStatus.COMPLETED)
        .order_by(WorkOrder.id.asc())
        .first()
    )


def _replay(existing: WorkOrder, request: WorkOrderRequest) -> Dict:
    if (existing.output_name != request.output_name
            or quantize_quantity(existing.output_quantity) != request.output_quantity):
        raise ValidationError(
            f"Reference {request.reference} already belongs to work order {existing.display_code} "
            f"with a different output",
            details={
                'reference': request.reference,
                'work_order': existing.display_code,
                'existing_output_name': existing.output_name,
                'existing_output_quantity': existing.output_quantity,
            },
            code='reference_conflict',
        )
    logger.info("WORK ORDER: reference %s already processed as %s; replaying", request.reference, existing.display_code)
    return work_order_result(existing, replayed=True)


def work_order_result(work_order: WorkOrder, replayed: bool = False) -> Dict:
    """The caller-facing result; identical for the original call and any replay."""
    def _ids(movement_type):
        return [m.id for m in work_order.movements_of_type(movement_type, include_reversed=True)]

    produce = _ids(MovementType.PRODUCE)
    return {
        'work_order_id': work_order.id,
        'work_order_code': work_order.display_code,
        'reference': work_order.reference,
        'replayed': replayed,
        'output_name': work_order.output_name,
        'output_quantity': quantize_quantity(work_order.output_quantity),
        'output_unit': work_order.output_unit,
        'issue_movement_ids': _ids(MovementType.ISSUE),
        'waste_movement_ids': _ids(MovementType.WASTE),
        'produce_movement_id': produce[0] if produce else None,
        'total_raw_cost_cents': work_order.total_raw_cost_cents,
        'total_waste_cost_cents': work_order.total_waste_cost_cents,
        'net_produce_cost_cents': work_order.net_produce_cost_cents,
        'total_raw_cost': cents_to_decimal(work_order.total_raw_cost_cents),
        'total_waste_cost': cents_to_decimal(work_order.total_waste_cost_cents),
        'net_produce_cost': cents_to_decimal(work_order.net_produce_cost_cents),
        'unit_cost': work_order.unit_cost,
    }


def _resolve_output_unit(request: WorkOrderRequest, raw_skus) -> Optional[str]:
    if request.output_unit:
        return request.output_unit
    # Convention: first raw line's unit
    return raw_skus[0].unit if raw_skus else None


def _shortfall_error(plans) -> InsufficientStockError:
    short = [
        {
            'sku_id': plan.sku_id,
            'requested': plan.requested_quantity,
            'available': plan.planned_quantity,
            'shortfall': plan.shortfall,
        }
        for plan in plans if not plan.is_complete
    ]
    total = quantize_quantity(sum((s['shortfall'] for s in short), Decimal('0')))
    names = ', '.join(s['sku_id'] for s in short)
    return InsufficientStockError(
        f"Insufficient stock for {names}",
        shortfall=total,
        details={'lines': short},
    )


def _execute_work_order_attempt(request: WorkOrderRequest) -> Dict:
    """One attempt, run under the SKU locks; the caller commits or rolls back."""
    existing = find_work_order_by_reference(request.reference)
    if existing is not None:
        return _replay(existing, request)

    raw_lines = request.merged_raw_lines()
    waste_lines = request.merged_waste_lines()
    raw_skus = [get_sku(sku_id, require_active=True) for sku_id in raw_lines]

    plans = [plan_consumption(sku_id, quantity) for sku_id, quantity in raw_lines.items()]
    if any(not plan.is_complete for plan in plans):
        raise _shortfall_error(plans)

    work_order = WorkOrder(
        reference=request.reference,
        output_name=request.output_name,
        output_quantity=request.output_quantity,
        output_unit=_resolve_output_unit(request, raw_skus),
        status=WorkOrderStatus.COMPLETED,
        notes=request.notes,
    )
    db.session.add(work_order)
    db.session.flush()
    work_order.code = generate_work_order_code(work_order.id)
    reference = request.reference or work_order.code

    issue_by_sku: Dict[str, Movement] = {}
    for sku, plan in zip(raw_skus, plans):
        issue_by_sku[sku.id] = record_movement(
            MovementType.ISSUE,
            plan,
            reference=reference,
            work_order_id=work_order.id,
            occurred_at=request.occurred_at,
            unit=sku.unit,
        )

    wastes: List[Movement] = []
    for sku_id, quantity in waste_lines.items():
        issue = issue_by_sku[sku_id]
        waste = open_movement(
            MovementType.WASTE,
            quantity,
            sku_id=sku_id,
            unit=issue.unit,
            reference=reference,
            work_order_id=work_order.id,
            occurred_at=request.occurred_at,
        )
        for line in carve_out(carve_sources_from_consumptions(issue.consumptions), quantity):
            db.session.add(LayerConsumption(
                movement_id=waste.id,
                layer_id=line.source.layer_id,
                quantity=line.quantity,
                unit_cost=line.source.unit_cost,
                total_cost_cents=line.cost_cents,
                carved_from_id=line.source.consumption_id,
            ))
        db.session.flush()
        db.session.refresh(waste, ['consumptions'])
        settle_movement_value(waste)
        wastes.append(waste)

    raw_cents = sum(m.total_value_cents for m in issue_by_sku.values())
    waste_cents = sum(m.total_value_cents for m in wastes)
    net_cents = raw_cents - waste_cents

    produce = open_movement(
        MovementType.PRODUCE,
        request.output_quantity,
        output_name=request.output_name,
        unit=work_order.output_unit,
        reference=reference,
        work_order_id=work_order.id,
        occurred_at=request.occurred_at,
        notes=request.notes,
    )
    settle_produce_value(produce, net_cents)

    work_order.total_raw_cost_cents = raw_cents
    work_order.total_waste_cost_cents = waste_cents
    work_order.net_produce_cost_cents = net_cents
    work_order.unit_cost = unit_cost_from_cents(net_cents, request.output_quantity)

    for sku in raw_skus:
        refresh_sku_cache(sku.id)

    db.session.flush()
    db.session.expire(work_order, ['movements'])
    verify_work_order_integrity(work_order)

    logger.info(
        "WORK ORDER: %s produced %s x %s raw=%s waste=%s net=%s cents",
        work_order.code, request.output_quantity, request.output_name, raw_cents, waste_cents, net_cents,
    )
    return work_order_result(work_order)


def process_work_order(payload) -> LedgerResult:
    """
    Consume every raw line FIFO, carve waste from what was issued, and record
    one PRODUCE movement valued at raw cost minus waste cost.
    """
    try:
        request = parse_request(WorkOrderRequest, payload)
        existing = find_work_order_by_reference(request.reference)
        if existing is not None:
            return LedgerResult.ok(_replay(existing, request))
    except LedgerError as exc:
        return LedgerResult.fail(exc)

    def _attempt():
        return _execute_work_order_attempt(request)

    try:
        result = run_ledger_transaction(_attempt, sku_ids=request.merged_raw_lines().keys())
    except LedgerIntegrityError:
        raise
    except ConcurrencyConflictError as exc:
        # A racing or lost-response attempt may have committed
        existing = find_work_order_by_reference(request.reference)
        if existing is not None:
            logger.warning("WORK ORDER: retries exhausted but %s was committed; replaying", existing.display_code)
            return LedgerResult.ok(_replay(existing, request))
        logger.warning("WORK ORDER: giving up after retries: %s", exc)
        return LedgerResult.fail(exc)
    except LedgerError as exc:
        logger.info("WORK ORDER: rejected (%s): %s", exc.code, exc.message)
        return LedgerResult.fail(exc)
    return LedgerResult.ok(result)


def preview_work_order(payload) -> LedgerResult:
    """Plans and costs for a work order without touching the store."""
    try:
        request = parse_request(WorkOrderRequest, payload)
        raw_lines = request.merged_raw_lines()
        waste_lines = request.merged_waste_lines()
        raw_skus = [get_sku(sku_id) for sku_id in raw_lines]
        plans = {sku_id: plan_consumption(sku_id, qty) for sku_id, qty in raw_lines.items()}
    except LedgerError as exc:
        return LedgerResult.fail(exc)

    waste = []
    for sku_id, quantity in waste_lines.items():
        plan = plans[sku_id]
        sources = carve_sources_from_plan(plan)
        if plan.is_complete:
            lines = carve_out(sources, quantity)
            waste.append({
                'sku_id': sku_id,
                'quantity': quantity,
                'cost_cents': sum(l.cost_cents for l in lines),
                'lines': [l.to_dict() for l in lines],
            })
        else:
            waste.append({'sku_id': sku_id, 'quantity': quantity, 'cost_cents': None, 'lines': []})

    raw_cents = sum(p.total_cost_cents for p in plans.values())
    fulfillable = all(p.is_complete for p in plans.values())
    waste_cents = sum(w['cost_cents'] or 0 for w in waste)
    net_cents = raw_cents - waste_cents if fulfillable else None

    return LedgerResult.ok({
        'output_name': request.output_name,
        'output_quantity': request.output_quantity,
        'output_unit': _resolve_output_unit(request, raw_skus),
        'can_fulfill': fulfillable,
        'unfulfillable': [
            {'sku_id': p.sku_id, 'requested': p.requested_quantity,
             'available': p.planned_quantity, 'shortfall': p.shortfall}
            for p in plans.values() if not p.is_complete
        ],
        'raw_plans': [p.to_dict() for p in plans.values()],
        'waste': waste,
        'total_raw_cost_cents': raw_cents,
        'total_waste_cost_cents': waste_cents,
        'net_produce_cost_cents': net_cents,
        'unit_cost': unit_cost_from_cents(net_cents, request.output_quantity) if net_cents is not None else None,
    })
