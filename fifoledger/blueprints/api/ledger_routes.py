import logging
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from ...services.layer_ledger import (
    LedgerError,
    LedgerIntegrityError,
    LedgerResult,
    ValidationError,
    adjust_layer,
    check_movement_deletion,
    create_receiving,
    current_layers,
    delete_movement,
    expire_layers,
    inventory_kpis,
    inventory_summary,
    issue_or_waste,
    list_movements,
    plan_consumption,
    preview_work_order,
    process_work_order,
    quarantine_layer,
    release_layer,
    validate_bulk_deletion,
    verify_integrity,
)
from ...services.layer_ledger._errors import _jsonable
from ...services.layer_ledger._validation import normalize_sku_id

logger = logging.getLogger(__name__)

ledger_api_bp = Blueprint('ledger_api', __name__, url_prefix='/ledger')

MAX_LISTED_MOVEMENTS = 5000


def _respond(result: LedgerResult, success_status: int = 200):
    if result.success:
        return jsonify(result.to_dict()), success_status
    return jsonify(result.to_dict()), result.error.http_status


def _error(exc: LedgerError):
    return _respond(LedgerResult.fail(exc))


def _payload():
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Request body must be a JSON object")
    return data


def _sku_filter():
    raw = request.args.get('sku_id')
    if not raw:
        return None
    try:
        return normalize_sku_id(raw)
    except ValueError as exc:
        raise ValidationError(str(exc), details={'fields': {'sku_id': str(exc)}}) from exc


def _parse_datetime(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an ISO-8601 timestamp", details={name: raw}) from exc


@ledger_api_bp.errorhandler(LedgerIntegrityError)
def _integrity_error(exc: LedgerIntegrityError):
    logger.error("Ledger integrity violation on %s: %s %s", request.path, exc.message, exc.details)
    return jsonify({'success': False, 'error': exc.to_dict()}), exc.http_status


@ledger_api_bp.errorhandler(LedgerError)
def _ledger_error(exc: LedgerError):
    return _error(exc)


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------

@ledger_api_bp.route('/receivings', methods=['POST'])
def receive_stock():
    """Receive stock into a new FIFO layer"""
    return _respond(create_receiving(_payload()), 201)


@ledger_api_bp.route('/consumptions', methods=['POST'])
def consume_stock():
    """Single-SKU ISSUE or WASTE"""
    return _respond(issue_or_waste(_payload()), 201)


@ledger_api_bp.route('/work-orders', methods=['POST'])
def create_work_order():
    result = process_work_order(_payload())
    status = 200 if result.success and result.value.get('replayed') else 201
    return _respond(result, status)


@ledger_api_bp.route('/work-orders/preview', methods=['POST'])
def work_order_preview():
    return _respond(preview_work_order(_payload()))


@ledger_api_bp.route('/adjustments', methods=['POST'])
def create_adjustment():
    return _respond(adjust_layer(_payload()), 201)


@ledger_api_bp.route('/movements/<int:movement_id>', methods=['DELETE'])
def remove_movement(movement_id):
    """Reverse a movement; blocked reversals come back as 409 with reasons"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    reason = data.get('reason', request.args.get('reason'))
    deleted_by = data.get('deleted_by', request.args.get('deleted_by'))
    return _respond(delete_movement(movement_id, reason=reason, deleted_by=deleted_by))


@ledger_api_bp.route('/movements/<int:movement_id>/deletion-check', methods=['GET'])
def movement_deletion_check(movement_id):
    return _respond(check_movement_deletion(movement_id))


@ledger_api_bp.route('/movements/deletion-check', methods=['POST'])
def bulk_deletion_check():
    ids = _payload().get('movement_ids')
    if not isinstance(ids, list) or not all(isinstance(i, int) for i in ids):
        raise ValidationError("movement_ids must be a list of integers")
    return _respond(LedgerResult.ok(validate_bulk_deletion(ids)))


@ledger_api_bp.route('/layers/<int:layer_id>/quarantine', methods=['POST'])
def quarantine(layer_id):
    return _respond(quarantine_layer(layer_id))


@ledger_api_bp.route('/layers/<int:layer_id>/release', methods=['POST'])
def release(layer_id):
    return _respond(release_layer(layer_id))


@ledger_api_bp.route('/layers/expire', methods=['POST'])
def expire():
    return _respond(expire_layers(_parse_datetime('as_of')))


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

@ledger_api_bp.route('/movements', methods=['GET'])
def movements():
    filters = {
        'date_from': _parse_datetime('date_from'),
        'date_to': _parse_datetime('date_to'),
        'movement_type': request.args.get('movement_type'),
        'sku_id': request.args.get('sku_id'),
        'reference': request.args.get('reference'),
        'work_order_id': request.args.get('work_order_id', type=int),
        'include_reversed': request.args.get('include_reversed', '').lower() in {'1', 'true', 'yes'},
    }
    limit = min(request.args.get('limit', 500, type=int), MAX_LISTED_MOVEMENTS)
    rows = []
    for movement in list_movements(filters):
        if len(rows) >= limit:
            break
        rows.append(_jsonable(movement.to_dict()))
    return jsonify({'success': True, 'data': rows, 'count': len(rows)})


@ledger_api_bp.route('/skus/<sku_id>/layers', methods=['GET'])
def sku_layers(sku_id):
    include_exhausted = request.args.get('include_exhausted', '').lower() in {'1', 'true', 'yes'}
    return _respond(LedgerResult.ok(current_layers(sku_id.upper(), include_exhausted)))


@ledger_api_bp.route('/skus/<sku_id>/plan', methods=['GET'])
def sku_plan(sku_id):
    """Speculative FIFO plan; partial plans are returned, not rejected"""
    quantity = request.args.get('quantity')
    if quantity is None:
        raise ValidationError("quantity is required")
    return _respond(LedgerResult.ok(plan_consumption(sku_id.upper(), quantity).to_dict()))


@ledger_api_bp.route('/summary', methods=['GET'])
def summary():
    return jsonify({'success': True, 'data': _jsonable(inventory_summary())})


@ledger_api_bp.route('/kpis', methods=['GET'])
def kpis():
    date_from = _parse_datetime('date_from')
    date_to = _parse_datetime('date_to')
    return _respond(LedgerResult.ok(inventory_kpis(date_from, date_to, _sku_filter())))


@ledger_api_bp.route('/integrity', methods=['GET'])
def integrity():
    is_valid, issues = verify_integrity(_sku_filter())
    if not is_valid:
        current_app.logger.error("Integrity check found %s issue(s)", len(issues))
    return jsonify({'success': True, 'data': {'valid': is_valid, 'issues': _jsonable(issues)}})
