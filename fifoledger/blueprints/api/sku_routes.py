from flask import Blueprint, jsonify, request

from ...services.layer_ledger._errors import _jsonable
from ...services.sku_service import SkuService

sku_api_bp = Blueprint('sku_api', __name__, url_prefix='/skus')


def _sku_response(result, success_status):
    ok, value = result
    if ok:
        return jsonify({'success': True, 'data': _jsonable(value.to_dict())}), success_status
    return jsonify({'success': False, 'error': value.to_dict()}), value.http_status


@sku_api_bp.route('', methods=['GET'])
def list_skus():
    include_inactive = request.args.get('include_inactive', '').lower() in {'1', 'true', 'yes'}
    return jsonify({'success': True, 'data': [_jsonable(s.to_dict()) for s in SkuService.list_skus(include_inactive)]})


@sku_api_bp.route('', methods=['POST'])
def create_sku():
    data = request.get_json(silent=True) or {}
    return _sku_response(SkuService.create_sku(data), 201)


@sku_api_bp.route('/<sku_id>', methods=['PATCH'])
def update_sku(sku_id):
    data = request.get_json(silent=True) or {}
    return _sku_response(SkuService.update_sku(sku_id, data), 200)


@sku_api_bp.route('/<sku_id>', methods=['GET'])
def get_sku(sku_id):
    sku = SkuService.get_sku(sku_id)
    if sku is None:
        return jsonify({'success': False, 'error': {'code': 'not_found', 'message': f'SKU {sku_id} not found'}}), 404
    return jsonify({'success': True, 'data': _jsonable(sku.to_dict())})
