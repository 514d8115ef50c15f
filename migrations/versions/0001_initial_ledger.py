"""0001 initial ledger schema

Revision ID: 0001_initial_ledger
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_ledger'
down_revision = None
branch_labels = None
depends_on = None

QUANTITY = sa.Numeric(18, 4)
UNIT_COST = sa.Numeric(18, 6)


def upgrade():
    op.create_table(
        'sku',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('material_type', sa.String(length=16), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('unit', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('min_stock', QUANTITY, nullable=False, server_default='0'),
        sa.Column('on_hand_quantity', QUANTITY, nullable=False, server_default='0'),
        sa.Column('average_cost', UNIT_COST, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint("material_type IN ('RAW', 'SELLABLE')", name='check_sku_material_type'),
        sa.CheckConstraint('min_stock >= 0', name='check_sku_min_stock_non_negative'),
    )
    op.create_index('ix_sku_category', 'sku', ['category'])

    op.create_table(
        'work_order',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=32), nullable=True, unique=True),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('output_name', sa.String(length=255), nullable=False),
        sa.Column('output_quantity', QUANTITY, nullable=False),
        sa.Column('output_unit', sa.String(length=32), nullable=True),
        sa.Column('total_raw_cost_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_waste_cost_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('net_produce_cost_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('unit_cost', UNIT_COST, nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('reversed_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('output_quantity > 0', name='check_work_order_output_positive'),
        sa.CheckConstraint(
            'net_produce_cost_cents = total_raw_cost_cents - total_waste_cost_cents',
            name='check_work_order_net_cost',
        ),
    )
    op.create_index('ix_work_order_reference', 'work_order', ['reference'])
    op.create_index('ix_work_order_status', 'work_order', ['status'])
    op.create_index('ix_work_order_reversed_at', 'work_order', ['reversed_at'])

    op.create_table(
        'movement',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('sku_id', sa.String(length=64), sa.ForeignKey('sku.id'), nullable=True),
        sa.Column('output_name', sa.String(length=255), nullable=True),
        sa.Column('quantity', QUANTITY, nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=True),
        sa.Column('unit_cost', UNIT_COST, nullable=True),
        sa.Column('total_value_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('work_order_id', sa.Integer(), sa.ForeignKey('work_order.id'), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('reversed_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('total_value_cents >= 0', name='check_movement_value_non_negative'),
        sa.CheckConstraint(
            "movement_type IN ('RECEIVE', 'ISSUE', 'WASTE', 'PRODUCE', 'ADJUSTMENT', 'TRANSFER')",
            name='check_movement_type',
        ),
        sa.CheckConstraint(
            "(movement_type = 'PRODUCE' AND output_name IS NOT NULL) OR "
            "(movement_type != 'PRODUCE' AND sku_id IS NOT NULL)",
            name='check_movement_target',
        ),
    )
    for column in ('occurred_at', 'movement_type', 'sku_id', 'reference', 'work_order_id', 'reversed_at'):
        op.create_index(f'ix_movement_{column}', 'movement', [column])
    op.create_index('ix_movement_type_occurred', 'movement', ['movement_type', 'occurred_at'])

    op.create_table(
        'fifo_layer',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=32), nullable=True, unique=True),
        sa.Column('sku_id', sa.String(length=64), sa.ForeignKey('sku.id'), nullable=False),
        sa.Column('source_movement_id', sa.Integer(), sa.ForeignKey('movement.id'), nullable=False),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('original_quantity', QUANTITY, nullable=False),
        sa.Column('remaining_quantity', QUANTITY, nullable=False),
        sa.Column('unit_cost', UNIT_COST, nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('expiration_date', sa.DateTime(), nullable=True),
        sa.Column('vendor_ref', sa.String(length=128), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.CheckConstraint('remaining_quantity >= 0', name='check_layer_remaining_non_negative'),
        sa.CheckConstraint('original_quantity > 0', name='check_layer_original_positive'),
        sa.CheckConstraint('remaining_quantity <= original_quantity',
                           name='check_layer_remaining_not_exceeds_original'),
        sa.CheckConstraint('unit_cost >= 0', name='check_layer_unit_cost_non_negative'),
    )
    for column in ('sku_id', 'source_movement_id', 'status', 'expiration_date'):
        op.create_index(f'ix_fifo_layer_{column}', 'fifo_layer', [column])
    op.create_index('ix_fifo_layer_draw_order', 'fifo_layer', ['sku_id', 'received_at', 'id'])

    op.create_table(
        'layer_consumption',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('movement_id', sa.Integer(), sa.ForeignKey('movement.id'), nullable=False),
        sa.Column('layer_id', sa.Integer(), sa.ForeignKey('fifo_layer.id'), nullable=False),
        sa.Column('quantity', QUANTITY, nullable=False),
        sa.Column('unit_cost', UNIT_COST, nullable=False),
        sa.Column('total_cost_cents', sa.BigInteger(), nullable=False),
        sa.Column('carved_from_id', sa.Integer(), sa.ForeignKey('layer_consumption.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('reversed_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('quantity > 0', name='check_consumption_quantity_positive'),
        sa.CheckConstraint('total_cost_cents >= 0', name='check_consumption_cost_non_negative'),
    )
    for column in ('movement_id', 'layer_id', 'carved_from_id', 'reversed_at'):
        op.create_index(f'ix_layer_consumption_{column}', 'layer_consumption', [column])
    op.create_index('ix_layer_consumption_layer_active', 'layer_consumption', ['layer_id', 'reversed_at'])


def downgrade():
    op.drop_table('layer_consumption')
    op.drop_table('fifo_layer')
    op.drop_table('movement')
    op.drop_table('work_order')
    op.drop_table('sku')
