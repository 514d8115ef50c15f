from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class TimestampMixin:
    """Adds created_at and updated_at timestamps to models"""
    created_at = db.Column(db.DateTime, default=TimezoneUtils.utc_now_naive, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=TimezoneUtils.utc_now_naive,
        onupdate=TimezoneUtils.utc_now_naive,
        nullable=False,
    )


class ReversibleMixin:
    """Soft-delete marker shared by ledger rows that are never hard deleted."""
    reversed_at = db.Column(db.DateTime, nullable=True, index=True)

    def mark_reversed(self, when=None):
        self.reversed_at = when or TimezoneUtils.utc_now_naive()
