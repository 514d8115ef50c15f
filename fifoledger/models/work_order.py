from decimal import Decimal

from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils
from .mixins import ReversibleMixin


class WorkOrderStatus:
    COMPLETED = 'COMPLETED'
    REVERSED = 'REVERSED'


def _dollars(cents):
    return (Decimal(cents or 0) / 100).quantize(Decimal('0.01'))


class WorkOrder(ReversibleMixin, db.Model):
    """
    Groups one PRODUCE movement with the ISSUE/WASTE movements it consumed.
    Movements point at the work order; the work order points at nothing.
    """
    __tablename__ = 'work_order'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=True, unique=True)
    reference = db.Column(db.String(128), nullable=True, index=True)

    output_name = db.Column(db.String(255), nullable=False)
    output_quantity = db.Column(db.Numeric(18, 4), nullable=False)
    output_unit = db.Column(db.String(32), nullable=True)

    total_raw_cost_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_waste_cost_cents = db.Column(db.BigInteger, nullable=False, default=0)
    net_produce_cost_cents = db.Column(db.BigInteger, nullable=False, default=0)
    unit_cost = db.Column(db.Numeric(18, 6), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=WorkOrderStatus.COMPLETED, index=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=TimezoneUtils.utc_now_naive)

    movements = db.relationship('Movement', back_populates='work_order', order_by='Movement.id')

    __table_args__ = (
        db.CheckConstraint('output_quantity > 0', name='check_work_order_output_positive'),
        db.CheckConstraint(
            'net_produce_cost_cents = total_raw_cost_cents - total_waste_cost_cents',
            name='check_work_order_net_cost',
        ),
    )

    def __repr__(self):
        return f'<WorkOrder {self.display_code} {self.output_name} x{self.output_quantity}>'

    @property
    def display_code(self):
        return self.code or f"WO-{self.id}"

    @property
    def total_raw_cost(self):
        return _dollars(self.total_raw_cost_cents)

    @property
    def total_waste_cost(self):
        return _dollars(self.total_waste_cost_cents)

    @property
    def net_produce_cost(self):
        return _dollars(self.net_produce_cost_cents)

    def movements_of_type(self, movement_type, include_reversed=False):
        return [
            m for m in self.movements
            if m.movement_type == movement_type and (include_reversed or m.reversed_at is None)
        ]

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.display_code,
            'reference': self.reference,
            'output_name': self.output_name,
            'output_quantity': str(self.output_quantity),
            'output_unit': self.output_unit,
            'total_raw_cost': str(self.total_raw_cost),
            'total_waste_cost': str(self.total_waste_cost),
            'net_produce_cost': str(self.net_produce_cost),
            'unit_cost': str(self.unit_cost) if self.unit_cost is not None else None,
            'status': self.status,
            'reversed_at': TimezoneUtils.isoformat(self.reversed_at),
        }
