from datetime import datetime
from decimal import Decimal

from fifoledger.extensions import db
from fifoledger.models import FifoLayer


class TestLedgerCommands:
    def test_verify_reports_a_consistent_ledger(self, runner, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 5, '1.00')

        result = runner.invoke(args=['ledger', 'verify'])

        assert result.exit_code == 0
        assert 'Ledger is consistent' in result.output

    def test_verify_fails_on_tampered_layers(self, runner, make_sku, receive):
        make_sku('RAW-1')
        layer = receive('RAW-1', 5, '1.00')['layer']
        db.session.get(FifoLayer, layer['id']).remaining_quantity = Decimal('3')
        db.session.commit()

        result = runner.invoke(args=['ledger', 'verify', '--sku', 'raw-1'])

        assert result.exit_code == 1
        assert 'integrity issue(s) found' in result.output
        assert '[layer_balance]' in result.output

    def test_expire_layers(self, runner, make_sku, receive):
        make_sku('RAW-1')
        receive('RAW-1', 5, '1.00', expiration_date=datetime(2026, 2, 1))

        result = runner.invoke(args=['ledger', 'expire-layers', '--as-of', '2026-03-01T00:00:00'])

        assert result.exit_code == 0
        assert 'LOT-0001 (RAW-1)' in result.output
        assert '1 layer(s) expired' in result.output

    def test_expire_layers_rejects_bad_dates(self, runner, app_context):
        result = runner.invoke(args=['ledger', 'expire-layers', '--as-of', 'yesterday'])

        assert result.exit_code == 2
        assert 'ISO-8601' in result.output

    def test_summary(self, runner, make_sku, receive):
        make_sku('RAW-1', min_stock='10')
        receive('RAW-1', 4, '2.50')

        result = runner.invoke(args=['ledger', 'summary'])

        assert result.exit_code == 0
        assert 'RAW-1' in result.output
        assert '10.00' in result.output
        assert '(below minimum)' in result.output

    def test_summary_without_skus(self, runner, app_context):
        result = runner.invoke(args=['ledger', 'summary'])

        assert 'No SKUs defined' in result.output
