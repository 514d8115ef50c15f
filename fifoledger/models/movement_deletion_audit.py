from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class MovementDeletionAudit(db.Model):
    """
    One row per reversed movement: a snapshot of the movement as it was, who
    reversed it and why, and which layers were restored, deleted or retired.
    Written in the same transaction as the reversal itself.
    """
    __tablename__ = 'movement_deletion_audit'

    id = db.Column(db.Integer, primary_key=True)

    movement_id = db.Column(db.Integer, db.ForeignKey('movement.id'), nullable=False, index=True)
    movement_type = db.Column(db.String(16), nullable=False)
    sku_id = db.Column(db.String(64), nullable=True, index=True)
    output_name = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_cost = db.Column(db.Numeric(18, 6), nullable=True)
    total_value_cents = db.Column(db.BigInteger, nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False)
    work_order_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    deletion_reason = db.Column(db.Text, nullable=True)
    deleted_by = db.Column(db.String(128), nullable=False, default='system', index=True)
    deleted_at = db.Column(db.DateTime, nullable=False, default=TimezoneUtils.utc_now_naive, index=True)

    # restored_layers / deleted_layers / retired_layers / dependent_movements_removed
    reversal_details = db.Column(db.JSON, nullable=True)

    movement = db.relationship('Movement')

    def __repr__(self):
        return f'<MovementDeletionAudit movement={self.movement_id} by={self.deleted_by}>'

    def to_dict(self):
        return {
            'id': self.id,
            'movement_id': self.movement_id,
            'movement_type': self.movement_type,
            'sku_id': self.sku_id,
            'output_name': self.output_name,
            'quantity': str(self.quantity),
            'unit_cost': str(self.unit_cost) if self.unit_cost is not None else None,
            'total_value_cents': self.total_value_cents,
            'reference': self.reference,
            'occurred_at': TimezoneUtils.isoformat(self.occurred_at),
            'work_order_id': self.work_order_id,
            'deletion_reason': self.deletion_reason,
            'deleted_by': self.deleted_by,
            'deleted_at': TimezoneUtils.isoformat(self.deleted_at),
            'reversal_details': self.reversal_details,
        }
