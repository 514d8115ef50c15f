"""
Transaction boundary and bounded retry for layer-mutating operations.
"""

import logging
from typing import Callable, Iterable, Optional, TypeVar

from flask import current_app
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ...extensions import db
from ._errors import ConcurrencyConflictError, LedgerError
from ._locks import sku_locks

logger = logging.getLogger(__name__)

T = TypeVar('T')

TRANSIENT_SQLSTATES = frozenset({'40001', '40P01', '55P03'})
TRANSIENT_MESSAGES = (
    'could not serialize',
    'deadlock detected',
    'lock not available',
    'database is locked',
)


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, 'orig', None)
    for candidate in (orig, exc):
        if candidate is None:
            continue
        code = getattr(candidate, 'pgcode', None) or getattr(candidate, 'sqlstate', None)
        if code:
            return str(code)
    return None


def is_transient_database_error(exc: BaseException) -> bool:
    """True for serialization failures, deadlocks and lock timeouts."""
    if isinstance(exc, StaleDataError):
        return True
    if not isinstance(exc, DBAPIError):
        return False
    if _sqlstate(exc) in TRANSIENT_SQLSTATES:
        return True
    message = str(getattr(exc, 'orig', None) or exc).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGES)


def is_retriable(exc: BaseException) -> bool:
    return isinstance(exc, LedgerError) and exc.retriable


def _config(key: str, default):
    return current_app.config.get(key, default)


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "LEDGER RETRY: %s attempt %s failed (%s); retrying in %.3fs",
        getattr(retry_state.fn, '__name__', 'operation'),
        retry_state.attempt_number,
        exc,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
    )


def run_with_retry(fn: Callable[[], T], *, attempts: Optional[int] = None) -> T:
    """Call fn, retrying retriable ledger errors with exponential backoff."""
    attempts = attempts or int(_config('LEDGER_RETRY_ATTEMPTS', 3))
    retrying = Retrying(
        stop=stop_after_attempt(max(attempts, 1)),
        wait=wait_exponential(
            multiplier=float(_config('LEDGER_RETRY_BASE_DELAY', 0.1)),
            min=0,
            max=float(_config('LEDGER_RETRY_MAX_DELAY', 2.0)),
        ),
        retry=retry_if_exception(is_retriable),
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(fn)


def run_ledger_transaction(
    fn: Callable[[], T],
    *,
    sku_ids: Iterable[str] = (),
    retry: bool = True,
    attempts: Optional[int] = None,
) -> T:
    """
    Run fn under the per-SKU locks and commit once. Any failure rolls the
    session back so no partial mutation survives. Stale rows and transient
    database errors surface as ConcurrencyConflictError.
    """
    sku_ids = list(sku_ids)

    def _attempt():
        with sku_locks(sku_ids, timeout=float(_config('LEDGER_LOCK_TIMEOUT', 10.0))):
            try:
                result = fn()
                db.session.commit()
                return result
            except LedgerError:
                db.session.rollback()
                raise
            except (StaleDataError, DBAPIError) as exc:
                db.session.rollback()
                if is_transient_database_error(exc):
                    logger.warning("LEDGER CONFLICT: %s on SKUs %s", exc.__class__.__name__, sku_ids)
                    raise ConcurrencyConflictError(
                        "Concurrent update detected; the operation can be retried",
                        details={'sku_ids': sku_ids, 'cause': str(exc)},
                    ) from exc
                raise
            except Exception:
                db.session.rollback()
                raise

    _attempt.__name__ = getattr(fn, '__name__', 'ledger_transaction')
    if not retry:
        return _attempt()
    return run_with_retry(_attempt, attempts=attempts)
