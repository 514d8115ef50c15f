from datetime import datetime
from decimal import Decimal

import pytest

from fifoledger.extensions import db
from fifoledger.models import SKU, FifoLayer, Movement
from fifoledger.services.layer_ledger import (
    ValidationError,
    cost_of_goods_consumed_cents,
    current_layers,
    delete_movement,
    inventory_kpis,
    inventory_summary,
    inventory_value_cents_at,
    issue_or_waste,
    verify_integrity,
)

JAN_1 = datetime(2026, 1, 1)
JAN_11 = datetime(2026, 1, 11)
JAN_31 = datetime(2026, 1, 31)


class TestInventoryKpis:
    def _seed(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 10, '10.00', received_at=JAN_1)
        ok, issue = issue_or_waste({'sku': 'RAW-1', 'quantity': '5', 'occurred_at': JAN_11})
        assert ok
        return issue

    def test_value_at_an_instant_replays_draws(self, make_sku, receive):
        self._seed(make_sku, receive)

        assert inventory_value_cents_at(datetime(2025, 12, 31)) == 0
        assert inventory_value_cents_at(JAN_1) == 10000
        assert inventory_value_cents_at(datetime(2026, 1, 10)) == 10000
        assert inventory_value_cents_at(JAN_31) == 5000

    def test_cogs_counts_live_draws_in_the_period(self, make_sku, receive):
        issue = self._seed(make_sku, receive)

        assert cost_of_goods_consumed_cents(JAN_1, JAN_31) == 5000
        assert cost_of_goods_consumed_cents(JAN_1, JAN_11) == 0

        assert delete_movement(issue['id']).success
        assert cost_of_goods_consumed_cents(JAN_1, JAN_31) == 0

    def test_turnover_and_days_of_inventory(self, make_sku, receive):
        self._seed(make_sku, receive)

        kpis = inventory_kpis(JAN_1, JAN_31)

        assert kpis['cogs_cents'] == 5000
        assert kpis['start_value_cents'] == 10000
        assert kpis['end_value_cents'] == 5000
        assert kpis['period_days'] == Decimal('30')
        # 5000 / ((10000 + 5000) / 2)
        assert kpis['turnover'] == Decimal('0.6667')
        # 5000 / (5000 / 30)
        assert kpis['days_of_inventory'] == Decimal('30.0000')

    def test_undefined_ratios_are_none(self, app_context):
        kpis = inventory_kpis(JAN_1, JAN_31)

        assert kpis['turnover'] is None
        assert kpis['days_of_inventory'] is None

    def test_period_must_move_forward(self, app_context):
        with pytest.raises(ValidationError):
            inventory_kpis(JAN_31, JAN_1)


class TestReadSide:
    def test_summary_reports_value_and_minimums(self, make_sku, receive):
        make_sku('RAW-1', min_stock='20')
        make_sku('RAW-2')
        receive('RAW-1', 10, '1.00')
        receive('RAW-1', 10, '2.00')

        rows = {row['sku_id']: row for row in inventory_summary()}

        assert rows['RAW-1']['on_hand_quantity'] == Decimal('20')
        assert rows['RAW-1']['value_cents'] == 3000
        assert rows['RAW-1']['average_cost'] == Decimal('1.5')
        assert rows['RAW-1']['below_minimum'] is False
        assert rows['RAW-2']['on_hand_quantity'] == 0
        assert rows['RAW-2']['layer_count'] == 0

    def test_current_layers_hides_exhausted_by_default(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 1, '1.00')
        kept = receive('RAW-1', 1, '1.00')['layer']
        issue_or_waste({'sku': 'RAW-1', 'quantity': '1'})

        assert [l['id'] for l in current_layers('RAW-1')] == [kept['id']]
        assert len(current_layers('RAW-1', include_exhausted=True)) == 2


class TestIntegrityVerification:
    def test_clean_ledger_verifies(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 10, '1.00')
        issue_or_waste({'sku': 'RAW-1', 'quantity': '4'})

        assert verify_integrity() == (True, [])

    def test_tampered_layer_is_reported_not_repaired(self, make_sku, receive):
        make_sku('RAW-1')
        layer = receive('RAW-1', 10, '1.00')['layer']
        issue_or_waste({'sku': 'RAW-1', 'quantity': '4'})

        tampered = db.session.get(FifoLayer, layer['id'])
        tampered.remaining_quantity = Decimal('9')
        db.session.commit()

        is_valid, issues = verify_integrity('RAW-1')

        kinds = {issue['kind'] for issue in issues}
        assert not is_valid
        assert 'layer_balance' in kinds
        assert 'sku_cache' in kinds
        assert db.session.get(FifoLayer, layer['id']).remaining_quantity == Decimal('9')

    def test_tampered_movement_value_is_reported(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 10, '1.00')
        ok, issue = issue_or_waste({'sku': 'RAW-1', 'quantity': '4'})

        movement = db.session.get(Movement, issue['id'])
        movement.total_value_cents = 1
        db.session.commit()

        is_valid, issues = verify_integrity()

        assert not is_valid
        assert [i['kind'] for i in issues] == ['movement_value']

    def test_cached_on_hand_is_kept_in_step(self, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 10, '1.00')
        issue_or_waste({'sku': 'RAW-1', 'quantity': '4'})

        assert db.session.get(SKU, 'RAW-1').on_hand_quantity == Decimal('6')
