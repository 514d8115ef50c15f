"""
Ledger error taxonomy.

Validation, not-found, stock and reversal errors are expected outcomes and
travel back to callers inside a LedgerResult. Concurrency conflicts are
retried before they surface. LedgerIntegrityError is always raised.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from ...utils.timezone_utils import TimezoneUtils


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return TimezoneUtils.isoformat(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class LedgerError(Exception):
    code = 'ledger_error'
    http_status = 500
    retriable = False

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'message': self.message,
            'details': _jsonable(self.details),
            'retriable': self.retriable,
        }

    def __repr__(self):
        return f'<{type(self).__name__} {self.code}: {self.message}>'


class ValidationError(LedgerError):
    code = 'validation_error'
    http_status = 400


class NotFoundError(LedgerError):
    code = 'not_found'
    http_status = 404


class InsufficientStockError(LedgerError):
    code = 'insufficient_stock'
    http_status = 409

    def __init__(self, message: str, *, shortfall=None, details=None, code=None):
        details = dict(details or {})
        if shortfall is not None:
            details.setdefault('shortfall', shortfall)
        super().__init__(message, details=details, code=code)
        self.shortfall = shortfall


class ConcurrencyConflictError(LedgerError):
    code = 'concurrency_conflict'
    http_status = 409
    retriable = True


class ReversalBlockedError(LedgerError):
    code = 'reversal_blocked'
    http_status = 409

    @property
    def blocking_work_orders(self):
        return list(self.details.get('work_orders', []))

    @property
    def blocking_movements(self):
        return list(self.details.get('movements', []))


class LedgerIntegrityError(LedgerError):
    code = 'integrity_violation'
    http_status = 500
