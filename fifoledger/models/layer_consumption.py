from decimal import Decimal

from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils
from .mixins import ReversibleMixin


class LayerConsumption(ReversibleMixin, db.Model):
    """
    Links one movement to one layer it drew from. Unit cost is copied from the
    layer when the row is written and never recomputed.

    A row with carved_from_id set is a carve-out: it attributes part of an
    existing draw to a WASTE movement and does not reduce the layer again.
    """
    __tablename__ = 'layer_consumption'

    id = db.Column(db.Integer, primary_key=True)
    movement_id = db.Column(db.Integer, db.ForeignKey('movement.id'), nullable=False, index=True)
    layer_id = db.Column(db.Integer, db.ForeignKey('fifo_layer.id'), nullable=False, index=True)
    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_cost = db.Column(db.Numeric(18, 6), nullable=False)
    total_cost_cents = db.Column(db.BigInteger, nullable=False)
    carved_from_id = db.Column(db.Integer, db.ForeignKey('layer_consumption.id'), nullable=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=TimezoneUtils.utc_now_naive)

    movement = db.relationship('Movement', back_populates='consumptions')
    layer = db.relationship('FifoLayer', back_populates='consumptions')
    carved_from = db.relationship('LayerConsumption', remote_side=[id])

    __table_args__ = (
        db.CheckConstraint('quantity > 0', name='check_consumption_quantity_positive'),
        db.CheckConstraint('total_cost_cents >= 0', name='check_consumption_cost_non_negative'),
        db.Index('ix_layer_consumption_layer_active', 'layer_id', 'reversed_at'),
    )

    def __repr__(self):
        kind = 'carve' if self.carved_from_id else 'draw'
        return f'<LayerConsumption {self.id} {kind} m={self.movement_id} l={self.layer_id} q={self.quantity}>'

    @property
    def is_draw(self):
        return self.carved_from_id is None

    @property
    def total_cost(self):
        return (Decimal(self.total_cost_cents or 0) / 100).quantize(Decimal('0.01'))

    def to_dict(self):
        return {
            'id': self.id,
            'movement_id': self.movement_id,
            'layer_id': self.layer_id,
            'layer_code': self.layer.display_code if self.layer else None,
            'quantity': str(self.quantity),
            'unit_cost': str(self.unit_cost),
            'total_cost': str(self.total_cost),
            'total_cost_cents': self.total_cost_cents,
            'carved_from_id': self.carved_from_id,
            'reversed_at': TimezoneUtils.isoformat(self.reversed_at),
        }
