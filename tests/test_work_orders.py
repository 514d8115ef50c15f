from decimal import Decimal

from fifoledger.extensions import db
from fifoledger.models import (
    SKU,
    FifoLayer,
    LayerConsumption,
    LayerStatus,
    Movement,
    MovementType,
    WorkOrder,
)
from fifoledger.services.layer_ledger import (
    ConcurrencyConflictError,
    InsufficientStockError,
    ValidationError,
    preview_work_order,
    process_work_order,
    verify_integrity,
)
from fifoledger.services.layer_ledger import _work_orders


def _produce_movements():
    return Movement.query.filter_by(movement_type=MovementType.PRODUCE).all()


class TestWorkOrderCosting:
    def test_produce_value_is_sum_of_raw_layer_costs(self, make_sku, receive):
        make_sku('RAW-1')
        make_sku('RAW-2')
        receive('RAW-1', 3000, '1.00')
        receive('RAW-2', 5000, '2.00')

        ok, result = process_work_order({
            'output_name': 'Finished Good',
            'output_quantity': '1000',
            'raw_lines': [
                {'sku': 'RAW-1', 'quantity': '3000'},
                {'sku': 'RAW-2', 'quantity': '5000'},
            ],
        })

        assert ok, result
        produce = db.session.get(Movement, result['produce_movement_id'])
        assert produce.total_value_cents == 1300000
        assert produce.total_value == Decimal('13000.00')
        assert result['net_produce_cost'] == Decimal('13000.00')
        assert result['unit_cost'] == Decimal('13')
        assert produce.output_name == 'Finished Good'
        assert produce.sku_id is None
        assert produce.quantity == Decimal('1000')
        assert db.session.get(SKU, 'RAW-1').on_hand_quantity == 0
        assert db.session.get(SKU, 'RAW-2').on_hand_quantity == 0
        assert verify_integrity() == (True, [])

    def test_waste_is_carved_from_the_issue_not_drawn_twice(self, make_sku, receive):
        make_sku('RAW-1')
        older = receive('RAW-1', 10, '2.00')['layer']
        newer = receive('RAW-1', 10, '3.00')['layer']

        ok, result = process_work_order({
            'output_name': 'Widget',
            'output_quantity': '12',
            'raw_lines': [{'sku': 'RAW-1', 'quantity': '15'}],
            'waste_lines': [{'sku': 'RAW-1', 'quantity': '3'}],
        })

        assert ok, result
        assert result['total_raw_cost_cents'] == 3500
        assert result['total_waste_cost_cents'] == 600
        assert result['net_produce_cost_cents'] == 2900

        assert db.session.get(FifoLayer, older['id']).status == LayerStatus.EXHAUSTED
        assert db.session.get(FifoLayer, newer['id']).remaining_quantity == Decimal('5')

        waste = db.session.get(Movement, result['waste_movement_ids'][0])
        assert waste.quantity == Decimal('-3')
        assert all(c.carved_from_id is not None for c in waste.consumptions)
        assert [c.layer_id for c in waste.consumptions] == [older['id']]
        assert verify_integrity() == (True, [])

    def test_repeated_raw_lines_are_merged_into_one_issue(self, make_sku, receive):
        make_sku('RAW-1', unit='g')
        receive('RAW-1', 10, '1.00')

        ok, result = process_work_order({
            'output_name': 'Blend',
            'output_quantity': '1',
            'raw_lines': [{'sku': 'RAW-1', 'quantity': '2'}, {'sku': 'raw-1', 'quantity': '3'}],
        })

        assert ok, result
        assert len(result['issue_movement_ids']) == 1
        issue = db.session.get(Movement, result['issue_movement_ids'][0])
        assert issue.quantity == Decimal('-5')
        assert result['output_unit'] == 'g'

    def test_explicit_output_unit_wins(self, make_sku, receive):
        make_sku('RAW-1', unit='g')
        receive('RAW-1', 10, '1.00')

        ok, result = process_work_order({
            'output_name': 'Blend',
            'output_quantity': '1',
            'output_unit': 'jar',
            'raw_lines': [{'sku': 'RAW-1', 'quantity': '2'}],
        })

        assert ok
        assert result['output_unit'] == 'jar'


class TestWorkOrderRejections:
    def test_shortfall_on_any_line_writes_nothing(self, make_sku, receive):
        make_sku('RAW-1')
        make_sku('RAW-2')
        layer = receive('RAW-1', 10, '1.00')['layer']
        receive('RAW-2', 1, '1.00')

        ok, error = process_work_order({
            'output_name': 'Widget',
            'output_quantity': '1',
            'raw_lines': [{'sku': 'RAW-1', 'quantity': '5'}, {'sku': 'RAW-2', 'quantity': '4'}],
        })

        assert not ok
        assert isinstance(error, InsufficientStockError)
        assert error.details['lines'][0]['sku_id'] == 'RAW-2'
        assert error.shortfall == Decimal('3')
        assert WorkOrder.query.count() == 0
        assert db.session.get(FifoLayer, layer['id']).remaining_quantity == Decimal('10')
        assert LayerConsumption.query.count() == 0

    def test_waste_sku_must_be_a_raw_line(self, make_sku, receive):
        make_sku('RAW-1')
        make_sku('RAW-2')

        ok, error = process_work_order({
            'output_name': 'Widget',
            'output_quantity': '1',
            'raw_lines': [{'sku': 'RAW-1', 'quantity': '5'}],
            'waste_lines': [{'sku': 'RAW-2', 'quantity': '1'}],
        })

        assert not ok
        assert isinstance(error, ValidationError)

    def test_waste_cannot_exceed_raw(self, make_sku):
        make_sku('RAW-1')

        ok, error = process_work_order({
            'output_name': 'Widget',
            'output_quantity': '1',
            'raw_lines': [{'sku': 'RAW-1', 'quantity': '5'}],
            'waste_lines': [{'sku': 'RAW-1', 'quantity': '6'}],
        })

        assert not ok
        assert isinstance(error, ValidationError)

    def test_sub_precision_quantities_are_rejected_before_storage(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 10, '1.00')

        ok, error = process_work_order({
            'output_name': 'Widget',
            'output_quantity': '0.00001',
            'raw_lines': [{'sku': 'RAW-1', 'quantity': '1'}],
        })
        ok_line, line_error = process_work_order({
            'output_name': 'Widget',
            'output_quantity': '1',
            'raw_lines': [{'sku': 'RAW-1', 'quantity': '0.00004'}],
        })

        assert not ok and not ok_line
        assert isinstance(error, ValidationError)
        assert 'output_quantity' in error.details['fields']
        assert 'raw_lines.0.quantity' in line_error.details['fields']
        assert WorkOrder.query.count() == 0
        assert LayerConsumption.query.count() == 0

    def test_work_order_needs_raw_lines(self, app_context):
        ok, error = process_work_order({'output_name': 'Widget', 'output_quantity': '1', 'raw_lines': []})

        assert not ok
        assert 'raw_lines' in error.details['fields']


class TestIdempotentResubmission:
    PAYLOAD = {
        'output_name': 'Widget',
        'output_quantity': '4',
        'raw_lines': [{'sku': 'RAW-1', 'quantity': '4'}],
        'reference': 'CLIENT-42',
    }

    def test_same_reference_returns_the_original_result(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 10, '1.00')

        ok, first = process_work_order(dict(self.PAYLOAD))
        ok_again, second = process_work_order(dict(self.PAYLOAD))

        assert ok and ok_again
        assert second['replayed'] is True
        assert second['work_order_id'] == first['work_order_id']
        assert second['produce_movement_id'] == first['produce_movement_id']
        assert len(_produce_movements()) == 1
        assert db.session.get(SKU, 'RAW-1').on_hand_quantity == Decimal('6')

    def test_reference_reuse_with_different_output_is_rejected(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 10, '1.00')
        assert process_work_order(dict(self.PAYLOAD)).success

        ok, error = process_work_order({**self.PAYLOAD, 'output_quantity': '5'})

        assert not ok
        assert error.code == 'reference_conflict'

    def test_committed_attempt_with_lost_response_is_replayed(self, make_sku, receive, monkeypatch):
        make_sku('RAW-1')
        receive('RAW-1', 10, '1.00')
        real_attempt = _work_orders._execute_work_order_attempt
        calls = []

        def _commit_then_lose_response(request):
            calls.append(1)
            if len(calls) == 1:
                real_attempt(request)
                db.session.commit()
            raise ConcurrencyConflictError("connection reset after commit")

        monkeypatch.setattr(_work_orders, '_execute_work_order_attempt', _commit_then_lose_response)

        ok, result = process_work_order(dict(self.PAYLOAD))

        assert ok, result
        assert result['replayed'] is True
        assert len(calls) == 3
        assert len(_produce_movements()) == 1
        assert db.session.get(SKU, 'RAW-1').on_hand_quantity == Decimal('6')


class TestWorkOrderPreview:
    def test_preview_costs_without_mutating(self, make_sku, receive):
        make_sku('RAW-1')
        make_sku('RAW-2')
        receive('RAW-1', 10, '2.00')
        receive('RAW-2', 1, '5.00')

        ok, preview = preview_work_order({
            'output_name': 'Widget',
            'output_quantity': '2',
            'raw_lines': [{'sku': 'RAW-1', 'quantity': '4'}, {'sku': 'RAW-2', 'quantity': '3'}],
            'waste_lines': [{'sku': 'RAW-1', 'quantity': '1'}],
        })

        assert ok
        assert preview['can_fulfill'] is False
        assert [u['sku_id'] for u in preview['unfulfillable']] == ['RAW-2']
        assert preview['waste'][0]['cost_cents'] == 200
        assert preview['net_produce_cost_cents'] is None
        assert Movement.query.filter(Movement.movement_type != MovementType.RECEIVE).count() == 0
        assert WorkOrder.query.count() == 0

    def test_preview_of_fulfillable_order(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 10, '2.00')

        ok, preview = preview_work_order({
            'output_name': 'Widget',
            'output_quantity': '2',
            'raw_lines': [{'sku': 'RAW-1', 'quantity': '4'}],
            'waste_lines': [{'sku': 'RAW-1', 'quantity': '1'}],
        })

        assert ok and preview['can_fulfill']
        assert preview['total_raw_cost_cents'] == 800
        assert preview['net_produce_cost_cents'] == 600
        assert preview['unit_cost'] == Decimal('3')
