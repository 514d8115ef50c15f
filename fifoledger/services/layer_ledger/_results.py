from dataclasses import dataclass
from typing import Any, Optional

from ._errors import LedgerError, _jsonable


@dataclass
class LedgerResult:
    """Typed outcome of a ledger entry point; unpacks as (success, value_or_error)."""

    success: bool
    value: Any = None
    error: Optional[LedgerError] = None

    @classmethod
    def ok(cls, value=None):
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: LedgerError):
        return cls(success=False, error=error)

    def __iter__(self):
        yield self.success
        yield self.value if self.success else self.error

    def __bool__(self):
        return self.success

    def to_dict(self):
        if self.success:
            return {'success': True, 'data': _jsonable(self.value)}
        return {'success': False, 'error': self.error.to_dict()}
