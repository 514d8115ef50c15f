"""
Layer status transitions outside consumption: expiry and quarantine.
These change status only, never quantities.
"""

import logging

from ...extensions import db
from ...models import FifoLayer, LayerStatus
from ...utils.timezone_utils import TimezoneUtils
from ._errors import LedgerError, LedgerIntegrityError, NotFoundError, ValidationError
from ._layer_store import lock_layers
from ._results import LedgerResult
from ._retry import run_ledger_transaction

logger = logging.getLogger(__name__)


def _transition(layer_id: int, allowed_from, new_status: str) -> LedgerResult:
    layer = db.session.get(FifoLayer, layer_id)
    if layer is None:
        return LedgerResult.fail(NotFoundError(f"Layer {layer_id} not found", details={'layer_id': layer_id}))

    def _apply():
        target = lock_layers([layer_id])[layer_id]
        if target.status not in allowed_from:
            raise ValidationError(
                f"{target.display_code} is {target.status}; cannot move to {new_status}",
                details={'layer_id': target.id, 'status': target.status, 'requested_status': new_status},
                code='invalid_layer_transition',
            )
        previous = target.status
        target.status = new_status
        logger.info("LAYER: %s %s -> %s", target.display_code, previous, new_status)
        return target.to_dict()

    try:
        return LedgerResult.ok(run_ledger_transaction(_apply, sku_ids=[layer.sku_id]))
    except LedgerIntegrityError:
        raise
    except LedgerError as exc:
        return LedgerResult.fail(exc)


def quarantine_layer(layer_id: int) -> LedgerResult:
    """Hold a layer back from FIFO draws."""
    return _transition(layer_id, (LayerStatus.ACTIVE, LayerStatus.EXPIRED), LayerStatus.QUARANTINE)


def release_layer(layer_id: int) -> LedgerResult:
    """Return a quarantined layer to the draw order (EXHAUSTED if it holds nothing)."""
    layer = db.session.get(FifoLayer, layer_id)
    if layer is not None and layer.status == LayerStatus.QUARANTINE and layer.remaining_quantity == 0:
        return _transition(layer_id, (LayerStatus.QUARANTINE,), LayerStatus.EXHAUSTED)
    return _transition(layer_id, (LayerStatus.QUARANTINE,), LayerStatus.ACTIVE)


def expire_layers(as_of=None) -> LedgerResult:
    """Flip ACTIVE layers whose expiration date has passed to EXPIRED."""
    cutoff = TimezoneUtils.to_naive_utc(as_of) or TimezoneUtils.utc_now_naive()
    sku_ids = [
        row[0] for row in
        db.session.query(FifoLayer.sku_id)
        .filter(
            FifoLayer.status == LayerStatus.ACTIVE,
            FifoLayer.expiration_date.isnot(None),
            FifoLayer.expiration_date <= cutoff,
        )
        .distinct()
        .all()
    ]
    if not sku_ids:
        return LedgerResult.ok({'expired': [], 'as_of': cutoff})

    def _sweep():
        candidates = (
            FifoLayer.query
            .filter(
                FifoLayer.sku_id.in_(sku_ids),
                FifoLayer.status == LayerStatus.ACTIVE,
                FifoLayer.expiration_date.isnot(None),
                FifoLayer.expiration_date <= cutoff,
            )
            .with_for_update()
            .order_by(FifoLayer.id.asc())
            .all()
        )
        expired = []
        for layer in candidates:
            layer.status = LayerStatus.EXPIRED
            expired.append({'layer_id': layer.id, 'layer_code': layer.display_code, 'sku_id': layer.sku_id,
                            'remaining_quantity': layer.remaining_quantity})
        logger.info("EXPIRY: %s layer(s) expired as of %s", len(expired), cutoff)
        return {'expired': expired, 'as_of': cutoff}

    try:
        return LedgerResult.ok(run_ledger_transaction(_sweep, sku_ids=sku_ids))
    except LedgerIntegrityError:
        raise
    except LedgerError as exc:
        return LedgerResult.fail(exc)
