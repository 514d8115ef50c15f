from decimal import Decimal

from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils
from .mixins import ReversibleMixin


class MovementType:
    RECEIVE = 'RECEIVE'
    ISSUE = 'ISSUE'
    WASTE = 'WASTE'
    PRODUCE = 'PRODUCE'
    ADJUSTMENT = 'ADJUSTMENT'
    TRANSFER = 'TRANSFER'
    ALL = (ADJUSTMENT, ISSUE, PRODUCE, RECEIVE, TRANSFER, WASTE)


class Movement(ReversibleMixin, db.Model):
    """
    One ledger entry. Quantity is signed (positive in, negative out);
    total_value_cents holds the magnitude and is always derived, never entered.
    """
    __tablename__ = 'movement'

    id = db.Column(db.Integer, primary_key=True)
    occurred_at = db.Column(db.DateTime, nullable=False, default=TimezoneUtils.utc_now_naive, index=True)
    movement_type = db.Column(db.String(16), nullable=False, index=True)

    sku_id = db.Column(db.String(64), db.ForeignKey('sku.id'), nullable=True, index=True)
    output_name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit = db.Column(db.String(32), nullable=True)
    unit_cost = db.Column(db.Numeric(18, 6), nullable=True)
    total_value_cents = db.Column(db.BigInteger, nullable=False, default=0)

    reference = db.Column(db.String(128), nullable=True, index=True)
    work_order_id = db.Column(db.Integer, db.ForeignKey('work_order.id'), nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=TimezoneUtils.utc_now_naive)

    sku = db.relationship('SKU')
    work_order = db.relationship('WorkOrder', back_populates='movements')
    consumptions = db.relationship(
        'LayerConsumption',
        back_populates='movement',
        order_by='LayerConsumption.id',
    )

    __table_args__ = (
        db.CheckConstraint('total_value_cents >= 0', name='check_movement_value_non_negative'),
        db.CheckConstraint(
            "movement_type IN ('RECEIVE', 'ISSUE', 'WASTE', 'PRODUCE', 'ADJUSTMENT', 'TRANSFER')",
            name='check_movement_type',
        ),
        db.CheckConstraint(
            "(movement_type = 'PRODUCE' AND output_name IS NOT NULL) OR "
            "(movement_type != 'PRODUCE' AND sku_id IS NOT NULL)",
            name='check_movement_target',
        ),
        db.Index('ix_movement_type_occurred', 'movement_type', 'occurred_at'),
    )

    def __repr__(self):
        target = self.sku_id or self.output_name
        return f'<Movement {self.id} {self.movement_type} {target} {self.quantity}>'

    @property
    def total_value(self):
        return (Decimal(self.total_value_cents or 0) / 100).quantize(Decimal('0.01'))

    def to_dict(self):
        return {
            'id': self.id,
            'occurred_at': TimezoneUtils.isoformat(self.occurred_at),
            'movement_type': self.movement_type,
            'sku_id': self.sku_id,
            'output_name': self.output_name,
            'quantity': str(self.quantity),
            'unit': self.unit,
            'unit_cost': str(self.unit_cost) if self.unit_cost is not None else None,
            'total_value': str(self.total_value),
            'total_value_cents': self.total_value_cents,
            'reference': self.reference,
            'work_order_id': self.work_order_id,
            'notes': self.notes,
            'reversed_at': TimezoneUtils.isoformat(self.reversed_at),
        }
