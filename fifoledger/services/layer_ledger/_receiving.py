import logging

from ...models import MovementType
from ._errors import LedgerError, LedgerIntegrityError
from ._layer_store import add_layer, get_sku, refresh_sku_cache
from ._movements import open_movement, settle_layer_value
from ._results import LedgerResult
from ._retry import run_ledger_transaction
from ._validation import ReceivingRequest, parse_request

logger = logging.getLogger(__name__)


def _receive(request: ReceivingRequest):
    sku = get_sku(request.sku, require_active=True)
    accepted = request.accepted_quantity
    rejected = request.rejected_quantity
    outcome = request.damage_outcome.mode if request.damage_outcome else 'APPROVE'

    if accepted == 0:
        logger.info("RECEIVE: %s %s fully rejected (%s); no layer created", request.quantity, sku.id, outcome)
        return {
            'layer': None,
            'movement': None,
            'accepted_quantity': accepted,
            'rejected_quantity': rejected,
            'damage_outcome': outcome,
        }

    notes = request.notes
    if rejected > 0:
        rejection = f"Rejected {rejected} {sku.unit} on receipt"
        if request.damage_outcome and request.damage_outcome.notes:
            rejection = f"{rejection}: {request.damage_outcome.notes}"
        notes = f"{notes}\n{rejection}" if notes else rejection

    movement = open_movement(
        MovementType.RECEIVE,
        accepted,
        sku_id=sku.id,
        unit=sku.unit,
        reference=request.reference or request.vendor_ref,
        occurred_at=request.received_at,
        notes=notes,
    )
    layer = add_layer(
        sku,
        accepted,
        request.unit_cost,
        request.received_at,
        source_movement=movement,
        expiration_date=request.expiration_date,
        vendor_ref=request.vendor_ref,
    )
    settle_layer_value(movement, [layer])
    refresh_sku_cache(sku.id)

    logger.info(
        "RECEIVE: %s +%s @ %s into %s (rejected %s, value %s cents)",
        sku.id, accepted, request.unit_cost, layer.code, rejected, movement.total_value_cents,
    )
    return {
        'layer': layer.to_dict(),
        'movement': movement.to_dict(),
        'accepted_quantity': accepted,
        'rejected_quantity': rejected,
        'damage_outcome': outcome,
    }


def create_receiving(payload) -> LedgerResult:
    """
    Receive stock into a new cost layer. Only the accepted quantity after
    damage handling reaches the layer store; a full rejection creates nothing.
    """
    try:
        request = parse_request(ReceivingRequest, payload)
        result = run_ledger_transaction(lambda: _receive(request), sku_ids=[request.sku])
    except LedgerIntegrityError:
        raise
    except LedgerError as exc:
        return LedgerResult.fail(exc)
    return LedgerResult.ok(result)
