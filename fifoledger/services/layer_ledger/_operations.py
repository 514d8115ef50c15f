"""
Single-SKU consumption, layer adjustments and the movement deletion paths.
"""

import logging
from typing import Dict, Iterable, List, Optional

from ...extensions import db
from ...models import FifoLayer, LayerStatus, MovementType
from ._errors import (
    InsufficientStockError,
    LedgerError,
    LedgerIntegrityError,
    NotFoundError,
    ValidationError,
)
from ._layer_store import add_layer, get_sku, refresh_sku_cache
from ._movements import open_movement, record_movement, settle_layer_value
from ._planner import plan_consumption, plan_from_layer
from ._results import LedgerResult
from ._retry import run_ledger_transaction
from ._reversal import (
    assess_reversal,
    describe_assessment,
    load_movement,
    record_deletion_audit,
    reversal_lock_keys,
    reverse_movement,
)
from ._validation import AdjustmentRequest, ConsumptionRequest, parse_request

logger = logging.getLogger(__name__)


def _run(operation, sku_ids) -> LedgerResult:
    try:
        return LedgerResult.ok(run_ledger_transaction(operation, sku_ids=sku_ids))
    except LedgerIntegrityError:
        raise
    except LedgerError as exc:
        return LedgerResult.fail(exc)


# ---------------------------------------------------------------------------
# ISSUE / WASTE
# ---------------------------------------------------------------------------

def issue_or_waste(payload) -> LedgerResult:
    """Plan, execute and record a single-SKU ISSUE or WASTE."""
    try:
        request = parse_request(ConsumptionRequest, payload)
    except LedgerError as exc:
        return LedgerResult.fail(exc)

    def _consume():
        sku = get_sku(request.sku, require_active=True)
        plan = plan_consumption(sku.id, request.quantity)
        if not plan.is_complete:
            raise InsufficientStockError(
                f"Insufficient stock for {sku.id}: requested {plan.requested_quantity}, "
                f"available {plan.planned_quantity}",
                shortfall=plan.shortfall,
                details={'sku_id': sku.id, 'requested': plan.requested_quantity,
                         'available': plan.planned_quantity},
            )
        movement = record_movement(
            request.kind,
            plan,
            reference=request.reference,
            occurred_at=request.occurred_at,
            notes=request.notes,
            unit=sku.unit,
        )
        refresh_sku_cache(sku.id)
        result = movement.to_dict()
        result['consumptions'] = [c.to_dict() for c in movement.consumptions]
        return result

    return _run(_consume, [request.sku])


# ---------------------------------------------------------------------------
# ADJUSTMENT
# ---------------------------------------------------------------------------

def adjust_layer(payload) -> LedgerResult:
    """
    Correct stock against one named layer. A negative delta draws from that
    layer only; a positive delta opens a new layer at the same unit cost.
    """
    try:
        request = parse_request(AdjustmentRequest, payload)
        layer = db.session.get(FifoLayer, request.layer_id)
        if layer is None:
            raise NotFoundError(f"Layer {request.layer_id} not found", details={'layer_id': request.layer_id})
        sku_id = layer.sku_id
    except LedgerError as exc:
        return LedgerResult.fail(exc)

    def _adjust():
        target = db.session.get(FifoLayer, request.layer_id)
        sku = get_sku(target.sku_id)
        notes = f"Adjustment of {target.display_code}: {request.reason}"

        if request.quantity_delta < 0:
            if target.status != LayerStatus.ACTIVE:
                raise ValidationError(
                    f"{target.display_code} is {target.status}; only ACTIVE layers can be drawn",
                    details={'layer_id': target.id, 'status': target.status},
                )
            plan = plan_from_layer(target, -request.quantity_delta)
            if not plan.is_complete:
                raise InsufficientStockError(
                    f"{target.display_code} has only {target.remaining_quantity} remaining",
                    shortfall=plan.shortfall,
                    details={'layer_id': target.id, 'remaining': target.remaining_quantity},
                )
            movement = record_movement(
                MovementType.ADJUSTMENT, plan,
                reference=request.reference, occurred_at=request.occurred_at, notes=notes, unit=sku.unit,
            )
            created = None
        else:
            movement = open_movement(
                MovementType.ADJUSTMENT, request.quantity_delta,
                sku_id=sku.id, unit=sku.unit, reference=request.reference,
                occurred_at=request.occurred_at, notes=notes,
            )
            created = add_layer(
                sku, request.quantity_delta, target.unit_cost, movement.occurred_at,
                source_movement=movement, expiration_date=target.expiration_date, vendor_ref=target.vendor_ref,
            )
            settle_layer_value(movement, [created])

        refresh_sku_cache(sku.id)
        logger.info("ADJUSTMENT: %s %s on %s (%s)", sku.id, request.quantity_delta, target.display_code, request.reason)
        return {
            'movement': movement.to_dict(),
            'adjusted_layer_id': target.id,
            'created_layer': created.to_dict() if created is not None else None,
        }

    return _run(_adjust, [sku_id])


# ---------------------------------------------------------------------------
# Deletion (reversal) paths
# ---------------------------------------------------------------------------

MAX_DELETED_BY_LENGTH = 128


def delete_movement(movement_id: int, reason: Optional[str] = None, deleted_by: Optional[str] = None) -> LedgerResult:
    """
    The only deletion path: a compensating reversal of the movement.

    Each successful reversal leaves one MovementDeletionAudit row, written in
    the same transaction, recording `reason`, `deleted_by` (default 'system')
    and the layers the reversal restored, deleted or retired.
    """
    if deleted_by is not None and (not isinstance(deleted_by, str) or len(deleted_by) > MAX_DELETED_BY_LENGTH):
        return LedgerResult.fail(ValidationError(
            f"deleted_by must be a string of at most {MAX_DELETED_BY_LENGTH} characters",
            details={'fields': {'deleted_by': 'invalid'}},
        ))
    if reason is not None and not isinstance(reason, str):
        return LedgerResult.fail(ValidationError(
            "reason must be a string", details={'fields': {'reason': 'invalid'}},
        ))
    try:
        movement = load_movement(movement_id)
        sku_ids = reversal_lock_keys(movement)
    except LedgerError as exc:
        return LedgerResult.fail(exc)

    def _reverse():
        target = load_movement(movement_id)
        result = reverse_movement(target)
        affected = set(sku_ids)
        if target.sku_id:
            affected.add(target.sku_id)
        for sku_id in sorted(affected):
            refresh_sku_cache(sku_id)
        audit = record_deletion_audit(target, result, reason=reason, deleted_by=deleted_by)
        result['audit_id'] = audit.id
        return result

    result = _run(_reverse, sku_ids)
    if not result.success:
        logger.info("REVERSAL: movement %s not reversed (%s)", movement_id, result.error.code)
    return result


def check_movement_deletion(movement_id: int) -> LedgerResult:
    """Preview a deletion: what would be restored, or why it is blocked."""
    try:
        movement = load_movement(movement_id)
    except LedgerError as exc:
        return LedgerResult.fail(exc)
    return LedgerResult.ok(describe_assessment(assess_reversal(movement)))


def validate_bulk_deletion(movement_ids: Iterable[int]) -> Dict:
    """Check each movement independently; nothing is changed."""
    allowed: List[Dict] = []
    blocked: List[Dict] = []
    for movement_id in movement_ids:
        ok, value = check_movement_deletion(movement_id)
        if not ok:
            blocked.append({'movement_id': movement_id, 'reason': value.code,
                            'message': value.message, 'details': value.details})
        elif value['allowed']:
            allowed.append(value)
        else:
            blocked.append({'movement_id': movement_id, 'reason': value['reason'],
                            'message': value['message'], 'details': value['blocking']})
    return {
        'allowed': allowed,
        'blocked': blocked,
        'summary': {
            'total': len(allowed) + len(blocked),
            'allowed_count': len(allowed),
            'blocked_count': len(blocked),
            'can_delete_all': not blocked,
        },
    }
