from datetime import datetime
from decimal import Decimal

from fifoledger.extensions import db
from fifoledger.models import SKU, FifoLayer, LayerConsumption, Movement, MovementType
from fifoledger.services.layer_ledger import (
    InsufficientStockError,
    ValidationError,
    delete_movement,
    issue_or_waste,
    list_movements,
)


class TestIssueAndWaste:
    """Single-SKU consumption through the canonical entry point."""

    def test_issue_value_traces_exactly_to_consumption_rows(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 5, '2.00')
        receive('RAW-1', 7, '3.333333')

        ok, result = issue_or_waste({'sku': 'RAW-1', 'quantity': '8', 'reference': 'PICK-1'})

        assert ok, result
        movement = db.session.get(Movement, result['id'])
        rows = movement.consumptions
        assert movement.quantity == Decimal('-8')
        assert movement.total_value_cents == sum(c.total_cost_cents for c in rows)
        # 5 x 2.00 + 3 x 3.333333 = 10.00 + 10.00 (999.9999 cents rounds to 1000)
        assert movement.total_value_cents == 2000
        assert movement.reference == 'PICK-1'

    def test_waste_is_recorded_with_its_own_type(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 5, '2.00')

        ok, result = issue_or_waste({'sku': 'raw-1', 'quantity': 1, 'kind': 'waste'})

        assert ok, result
        assert result['movement_type'] == MovementType.WASTE
        assert result['sku_id'] == 'RAW-1'
        assert db.session.get(SKU, 'RAW-1').on_hand_quantity == Decimal('4')

    def test_insufficient_stock_changes_nothing(self, make_sku, receive):
        make_sku('RAW-1')
        layer = receive('RAW-1', 5, '2.00')['layer']

        ok, error = issue_or_waste({'sku': 'RAW-1', 'quantity': '6'})

        assert not ok
        assert isinstance(error, InsufficientStockError)
        assert error.shortfall == Decimal('1')
        assert db.session.get(FifoLayer, layer['id']).remaining_quantity == Decimal('5')
        assert Movement.query.filter_by(movement_type=MovementType.ISSUE).count() == 0
        assert LayerConsumption.query.count() == 0

    def test_invalid_payload_is_a_validation_error(self, make_sku):
        make_sku('RAW-1')

        ok, error = issue_or_waste({'sku': 'RAW-1', 'quantity': '0'})

        assert not ok
        assert isinstance(error, ValidationError)
        assert 'quantity' in error.details['fields']

    def test_quantity_below_ledger_precision_is_rejected(self, make_sku, receive):
        make_sku('RAW-1')
        layer = receive('RAW-1', 5, '2.00')['layer']

        ok, error = issue_or_waste({'sku': 'RAW-1', 'quantity': '0.00001'})

        assert not ok
        assert isinstance(error, ValidationError)
        assert 'rounds to zero' in error.details['fields']['quantity']
        assert Movement.query.filter_by(movement_type=MovementType.ISSUE).count() == 0
        assert db.session.get(FifoLayer, layer['id']).remaining_quantity == Decimal('5')

    def test_inactive_sku_cannot_be_consumed(self, make_sku, receive):
        sku = make_sku('RAW-1')
        receive('RAW-1', 5, '2.00')
        sku.is_active = False
        db.session.commit()

        ok, error = issue_or_waste({'sku': 'RAW-1', 'quantity': '1'})

        assert not ok
        assert error.code == 'sku_inactive'


class TestListMovements:
    def _seed(self, make_sku, receive):
        make_sku('RAW-1')
        make_sku('RAW-2')
        receive('RAW-1', 10, '1.00', received_at=datetime(2026, 1, 1))
        receive('RAW-2', 10, '1.00', received_at=datetime(2026, 1, 2))
        issue_or_waste({'sku': 'RAW-1', 'quantity': '2', 'occurred_at': datetime(2026, 1, 3)})
        ok, issue = issue_or_waste({'sku': 'RAW-1', 'quantity': '1', 'occurred_at': datetime(2026, 1, 4)})
        return issue

    def test_movements_stream_oldest_first(self, make_sku, receive):
        self._seed(make_sku, receive)

        types = [m.movement_type for m in list_movements()]

        assert types == [MovementType.RECEIVE, MovementType.RECEIVE, MovementType.ISSUE, MovementType.ISSUE]

    def test_filters_narrow_the_stream(self, make_sku, receive):
        self._seed(make_sku, receive)

        by_sku = list(list_movements({'sku_id': 'RAW-1', 'movement_type': 'issue'}))
        by_date = list(list_movements({'date_from': datetime(2026, 1, 2), 'date_to': datetime(2026, 1, 4)}))

        assert len(by_sku) == 2
        assert [m.occurred_at.day for m in by_date] == [2, 3]

    def test_reversed_movements_are_hidden_unless_requested(self, make_sku, receive):
        issue = self._seed(make_sku, receive)
        assert delete_movement(issue['id']).success

        live = list(list_movements({'movement_type': 'ISSUE'}))
        everything = list(list_movements({'movement_type': 'ISSUE', 'include_reversed': True}))

        assert len(live) == 1
        assert len(everything) == 2
