"""
Pytest configuration and shared fixtures for the FIFO ledger tests.
"""
import os
import tempfile
from datetime import datetime, timedelta

import pytest

from fifoledger import create_app
from fifoledger.extensions import db
from fifoledger.services.layer_ledger import create_receiving
from fifoledger.services.sku_service import SkuService

BASE_TIME = datetime(2026, 1, 1, 8, 0, 0)


@pytest.fixture(scope='function')
def app():
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp(suffix='.db')

    app = create_app({
        'TESTING': True,
        'DATABASE_URL': f'sqlite:///{db_path}',
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SECRET_KEY': 'test-secret-key',
        'LEDGER_RETRY_BASE_DELAY': 0.0,
        'LEDGER_RETRY_MAX_DELAY': 0.0,
        'LEDGER_LOCK_TIMEOUT': 2.0,
        'LOG_LEVEL': 'INFO',
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()

    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def app_context(app):
    """Provide an application context for tests that need it."""
    with app.app_context():
        yield


@pytest.fixture
def db_session(app_context):
    yield db.session
    db.session.rollback()


@pytest.fixture
def make_sku(app_context):
    """Register a SKU and return it."""
    def _make(sku_id, unit='kg', material_type='RAW', **extra):
        ok, value = SkuService.create_sku({'id': sku_id, 'unit': unit, 'material_type': material_type, **extra})
        assert ok, value
        return value
    return _make


@pytest.fixture
def receive(app_context):
    """
    Receive stock and return the result dict. Each call defaults to a
    receiving time one day after the previous one so layer order is explicit.
    """
    calls = {'n': 0}

    def _receive(sku_id, quantity, unit_cost, received_at=None, **extra):
        if received_at is None:
            received_at = BASE_TIME + timedelta(days=calls['n'])
        calls['n'] += 1
        payload = {
            'sku': sku_id,
            'quantity': str(quantity),
            'unit_cost': str(unit_cost),
            'received_at': received_at,
            **extra,
        }
        ok, value = create_receiving(payload)
        assert ok, value
        return value
    return _receive
