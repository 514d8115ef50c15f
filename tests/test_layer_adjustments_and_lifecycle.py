from datetime import datetime
from decimal import Decimal

from fifoledger.extensions import db
from fifoledger.models import SKU, FifoLayer, LayerStatus, Movement, MovementType
from fifoledger.services.layer_ledger import (
    InsufficientStockError,
    adjust_layer,
    expire_layers,
    inventory_summary,
    issue_or_waste,
    plan_consumption,
    quarantine_layer,
    release_layer,
)


class TestLayerAdjustments:
    def test_negative_adjustment_draws_the_named_layer_only(self, make_sku, receive):
        make_sku('RAW-1')
        older = receive('RAW-1', 5, '2.00')['layer']
        newer = receive('RAW-1', 5, '3.00')['layer']

        ok, result = adjust_layer({'layer_id': newer['id'], 'quantity_delta': '-2', 'reason': 'cycle count'})

        assert ok, result
        assert db.session.get(FifoLayer, older['id']).remaining_quantity == Decimal('5')
        assert db.session.get(FifoLayer, newer['id']).remaining_quantity == Decimal('3')
        movement = db.session.get(Movement, result['movement']['id'])
        assert movement.movement_type == MovementType.ADJUSTMENT
        assert movement.quantity == Decimal('-2')
        assert movement.total_value_cents == 600
        assert 'cycle count' in movement.notes

    def test_negative_adjustment_cannot_overdraw(self, make_sku, receive):
        make_sku('RAW-1')
        layer = receive('RAW-1', 2, '2.00')['layer']

        ok, error = adjust_layer({'layer_id': layer['id'], 'quantity_delta': '-3', 'reason': 'spill'})

        assert not ok
        assert isinstance(error, InsufficientStockError)
        assert db.session.get(FifoLayer, layer['id']).remaining_quantity == Decimal('2')

    def test_positive_adjustment_opens_a_layer_at_the_same_cost(self, make_sku, receive):
        make_sku('RAW-1')
        layer = receive('RAW-1', 2, '2.50', vendor_ref='PO-1')['layer']

        ok, result = adjust_layer({'layer_id': layer['id'], 'quantity_delta': '4', 'reason': 'found stock'})

        assert ok, result
        created = db.session.get(FifoLayer, result['created_layer']['id'])
        assert created.original_quantity == Decimal('4')
        assert created.unit_cost == Decimal('2.50')
        assert created.vendor_ref == 'PO-1'
        assert created.source_movement_id == result['movement']['id']
        assert db.session.get(Movement, result['movement']['id']).total_value_cents == 1000
        assert db.session.get(SKU, 'RAW-1').on_hand_quantity == Decimal('6')

    def test_zero_delta_is_invalid(self, make_sku, receive):
        make_sku('RAW-1')
        layer = receive('RAW-1', 2, '2.00')['layer']

        ok, error = adjust_layer({'layer_id': layer['id'], 'quantity_delta': '0', 'reason': 'noop'})

        assert not ok
        assert 'quantity_delta' in error.details['fields']

    def test_quarantined_layer_cannot_be_drawn_by_adjustment(self, make_sku, receive):
        make_sku('RAW-1')
        layer = receive('RAW-1', 2, '2.00')['layer']
        assert quarantine_layer(layer['id']).success

        ok, error = adjust_layer({'layer_id': layer['id'], 'quantity_delta': '-1', 'reason': 'scrap'})

        assert not ok
        assert error.details['status'] == LayerStatus.QUARANTINE

    def test_unknown_layer(self, app_context):
        ok, error = adjust_layer({'layer_id': 999, 'quantity_delta': '-1', 'reason': 'x'})
        assert not ok
        assert error.code == 'not_found'


class TestLayerLifecycle:
    def test_expiry_sweep_flips_only_past_dates(self, make_sku, receive):
        make_sku('RAW-1')
        stale = receive('RAW-1', 3, '1.00', expiration_date=datetime(2026, 2, 1))['layer']
        fresh = receive('RAW-1', 3, '1.00', expiration_date=datetime(2026, 12, 1))['layer']
        undated = receive('RAW-1', 3, '1.00')['layer']

        ok, result = expire_layers(datetime(2026, 3, 1))

        assert ok
        assert [row['layer_id'] for row in result['expired']] == [stale['id']]
        assert db.session.get(FifoLayer, stale['id']).status == LayerStatus.EXPIRED
        assert db.session.get(FifoLayer, fresh['id']).status == LayerStatus.ACTIVE
        assert db.session.get(FifoLayer, undated['id']).status == LayerStatus.ACTIVE
        assert plan_consumption('RAW-1', 4).layer_ids == [fresh['id'], undated['id']]

    def test_expired_stock_is_on_hand_but_not_available(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 3, '1.00', expiration_date=datetime(2026, 2, 1))
        receive('RAW-1', 2, '1.00')
        expire_layers(datetime(2026, 3, 1))

        row = next(r for r in inventory_summary() if r['sku_id'] == 'RAW-1')

        assert row['on_hand_quantity'] == Decimal('5')
        assert row['available_quantity'] == Decimal('2')

    def test_sweep_with_nothing_to_expire(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 3, '1.00')

        ok, result = expire_layers(datetime(2026, 3, 1))

        assert ok and result['expired'] == []

    def test_quarantine_and_release(self, make_sku, receive):
        make_sku('RAW-1')
        layer = receive('RAW-1', 3, '1.00')['layer']

        ok, held = quarantine_layer(layer['id'])
        assert ok and held['status'] == LayerStatus.QUARANTINE
        assert not issue_or_waste({'sku': 'RAW-1', 'quantity': '1'}).success

        ok, released = release_layer(layer['id'])
        assert ok and released['status'] == LayerStatus.ACTIVE
        assert issue_or_waste({'sku': 'RAW-1', 'quantity': '1'}).success

    def test_release_requires_quarantine(self, make_sku, receive):
        make_sku('RAW-1')
        layer = receive('RAW-1', 3, '1.00')['layer']

        ok, error = release_layer(layer['id'])

        assert not ok
        assert error.code == 'invalid_layer_transition'

    def test_exhausted_layer_cannot_be_quarantined(self, make_sku, receive):
        make_sku('RAW-1')
        layer = receive('RAW-1', 1, '1.00')['layer']
        issue_or_waste({'sku': 'RAW-1', 'quantity': '1'})

        ok, error = quarantine_layer(layer['id'])

        assert not ok
        assert error.details['status'] == LayerStatus.EXHAUSTED
