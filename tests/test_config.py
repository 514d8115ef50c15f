"""Environment parsing and the optional create_all bootstrap."""
import pytest
from sqlalchemy import inspect

from fifoledger import create_app
from fifoledger.config import EnvReader, _normalize_db_url, _resolve_environment
from fifoledger.extensions import db


class TestEnvReader:
    def test_boolean_values(self):
        reader = EnvReader({'ON': 'yes', 'OFF': ' False ', 'BLANK': '  '})

        assert reader.bool('ON') is True
        assert reader.bool('OFF', True) is False
        assert reader.bool('BLANK', True) is True
        assert reader.bool('MISSING') is False
        assert reader.warnings == []

    def test_unparseable_values_fall_back_with_a_warning(self):
        reader = EnvReader({'FLAG': 'maybe', 'COUNT': 'three', 'DELAY': 'soon'})

        assert reader.bool('FLAG', True) is True
        assert reader.int('COUNT', 3) == 3
        assert reader.float('DELAY', 0.5) == 0.5
        assert len(reader.warnings) == 3
        assert 'FLAG expected boolean' in reader.warnings[0]

    def test_numbers(self):
        reader = EnvReader({'COUNT': '7', 'DELAY': '0.25'})

        assert reader.int('COUNT') == 7
        assert reader.float('DELAY') == 0.25

    def test_environment_name_is_validated(self):
        assert _resolve_environment(EnvReader({'FLASK_ENV': 'Testing'})).name == 'testing'
        assert _resolve_environment(EnvReader({})).name == 'development'
        with pytest.raises(RuntimeError):
            _resolve_environment(EnvReader({'FLASK_ENV': 'qa'}))

    def test_heroku_style_postgres_urls_are_normalized(self):
        assert _normalize_db_url('postgres://u:p@h/db') == 'postgresql://u:p@h/db'
        assert _normalize_db_url('sqlite:///x.db') == 'sqlite:///x.db'
        assert _normalize_db_url('') is None


class TestCreateAllBootstrap:
    def test_tables_are_created_only_when_enabled(self, tmp_path):
        enabled = create_app({
            'TESTING': True,
            'DATABASE_URL': f"sqlite:///{tmp_path / 'on.db'}",
            'SQLALCHEMY_CREATE_ALL': True,
        })
        disabled = create_app({
            'TESTING': True,
            'DATABASE_URL': f"sqlite:///{tmp_path / 'off.db'}",
            'SQLALCHEMY_CREATE_ALL': False,
        })

        with enabled.app_context():
            assert 'fifo_layer' in inspect(db.engine).get_table_names()
            db.engine.dispose()
        with disabled.app_context():
            assert inspect(db.engine).get_table_names() == []
            db.engine.dispose()
