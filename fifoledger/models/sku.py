import re
from decimal import Decimal

from sqlalchemy.orm import validates

from ..extensions import db
from .mixins import TimestampMixin

SKU_ID_PATTERN = re.compile(r'^[A-Z0-9-]+$')


class MaterialType:
    RAW = 'RAW'
    SELLABLE = 'SELLABLE'
    ALL = (RAW, SELLABLE)


class SKU(TimestampMixin, db.Model):
    """
    A stock-keeping unit. On-hand quantity and average cost are caches
    refreshed by the layer ledger; nothing else writes them.
    """
    __tablename__ = 'sku'

    id = db.Column(db.String(64), primary_key=True)
    description = db.Column(db.String(255), nullable=True)
    material_type = db.Column(db.String(16), nullable=False, default=MaterialType.RAW)
    category = db.Column(db.String(64), nullable=True, index=True)
    unit = db.Column(db.String(32), nullable=False, default='unit')
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    min_stock = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal('0'))

    # Ledger-maintained caches
    on_hand_quantity = db.Column(db.Numeric(18, 4), nullable=False, default=Decimal('0'))
    average_cost = db.Column(db.Numeric(18, 6), nullable=True)

    # Unordered; draw order comes from layer_ledger.layers_for()
    layers = db.relationship('FifoLayer', back_populates='sku')

    __table_args__ = (
        db.CheckConstraint("material_type IN ('RAW', 'SELLABLE')", name='check_sku_material_type'),
        db.CheckConstraint('min_stock >= 0', name='check_sku_min_stock_non_negative'),
    )

    def __repr__(self):
        return f'<SKU {self.id}: {self.on_hand_quantity} {self.unit}>'

    @validates('id')
    def _validate_id(self, key, value):
        normalized = (value or '').strip().upper()
        if not SKU_ID_PATTERN.match(normalized):
            raise ValueError(f"Invalid SKU id {value!r}: use A-Z, 0-9 and '-' only")
        return normalized

    @validates('material_type')
    def _validate_material_type(self, key, value):
        if value not in MaterialType.ALL:
            raise ValueError(f"Invalid material type {value!r}")
        return value

    @property
    def is_below_minimum(self):
        return Decimal(self.on_hand_quantity or 0) < Decimal(self.min_stock or 0)

    def to_dict(self):
        return {
            'id': self.id,
            'description': self.description,
            'material_type': self.material_type,
            'category': self.category,
            'unit': self.unit,
            'is_active': self.is_active,
            'min_stock': str(self.min_stock),
            'on_hand_quantity': str(self.on_hand_quantity),
            'average_cost': str(self.average_cost) if self.average_cost is not None else None,
            'below_minimum': self.is_below_minimum,
        }
