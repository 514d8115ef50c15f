from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class LayerStatus:
    ACTIVE = 'ACTIVE'
    EXHAUSTED = 'EXHAUSTED'
    EXPIRED = 'EXPIRED'
    QUARANTINE = 'QUARANTINE'
    # Source receipt reversed after its draws were reversed; kept for history
    REVERSED = 'REVERSED'
    ALL = (ACTIVE, EXHAUSTED, EXPIRED, QUARANTINE, REVERSED)
    # Physically on hand, whether or not drawable
    ON_HAND = (ACTIVE, EXPIRED, QUARANTINE)


class FifoLayer(db.Model):
    """
    One cost lot for one SKU. Original quantity and unit cost never change;
    remaining quantity moves only through the ledger executor and reversal engine.
    """
    __tablename__ = 'fifo_layer'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=True, unique=True)
    sku_id = db.Column(db.String(64), db.ForeignKey('sku.id'), nullable=False, index=True)
    source_movement_id = db.Column(db.Integer, db.ForeignKey('movement.id'), nullable=False, index=True)

    received_at = db.Column(db.DateTime, nullable=False, default=TimezoneUtils.utc_now_naive)
    created_at = db.Column(db.DateTime, nullable=False, default=TimezoneUtils.utc_now_naive)

    original_quantity = db.Column(db.Numeric(18, 4), nullable=False)
    remaining_quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_cost = db.Column(db.Numeric(18, 6), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=LayerStatus.ACTIVE, index=True)

    expiration_date = db.Column(db.DateTime, nullable=True, index=True)
    vendor_ref = db.Column(db.String(128), nullable=True)

    version_id = db.Column(db.Integer, nullable=False)

    sku = db.relationship('SKU', back_populates='layers')
    source_movement = db.relationship('Movement', foreign_keys=[source_movement_id])
    consumptions = db.relationship('LayerConsumption', back_populates='layer', order_by='LayerConsumption.id')

    __mapper_args__ = {'version_id_col': version_id}

    __table_args__ = (
        db.CheckConstraint('remaining_quantity >= 0', name='check_layer_remaining_non_negative'),
        db.CheckConstraint('original_quantity > 0', name='check_layer_original_positive'),
        db.CheckConstraint('remaining_quantity <= original_quantity', name='check_layer_remaining_not_exceeds_original'),
        db.CheckConstraint('unit_cost >= 0', name='check_layer_unit_cost_non_negative'),
        db.Index('ix_fifo_layer_draw_order', 'sku_id', 'received_at', 'id'),
    )

    def __repr__(self):
        return f'<FifoLayer {self.display_code}: {self.remaining_quantity}/{self.original_quantity} @ {self.unit_cost}>'

    @property
    def display_code(self):
        return self.code or f"LOT-{self.id}"

    @property
    def is_drawable(self):
        return self.status == LayerStatus.ACTIVE and self.remaining_quantity > 0

    @property
    def consumed_quantity(self):
        return self.original_quantity - self.remaining_quantity

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.display_code,
            'sku_id': self.sku_id,
            'source_movement_id': self.source_movement_id,
            'received_at': TimezoneUtils.isoformat(self.received_at),
            'original_quantity': str(self.original_quantity),
            'remaining_quantity': str(self.remaining_quantity),
            'unit_cost': str(self.unit_cost),
            'status': self.status,
            'expiration_date': TimezoneUtils.isoformat(self.expiration_date),
            'vendor_ref': self.vendor_ref,
        }
