"""0002 movement deletion audit trail

Revision ID: 0002_movement_deletion_audit
Revises: 0001_initial_ledger
Create Date: 2026-10-19 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0002_movement_deletion_audit'
down_revision = '0001_initial_ledger'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'movement_deletion_audit',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('movement_id', sa.Integer(), sa.ForeignKey('movement.id'), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('sku_id', sa.String(length=64), nullable=True),
        sa.Column('output_name', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Numeric(18, 4), nullable=False),
        sa.Column('unit_cost', sa.Numeric(18, 6), nullable=True),
        sa.Column('total_value_cents', sa.BigInteger(), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('work_order_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('deletion_reason', sa.Text(), nullable=True),
        sa.Column('deleted_by', sa.String(length=128), nullable=False, server_default='system'),
        sa.Column('deleted_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('reversal_details', sa.JSON(), nullable=True),
    )
    for column in ('movement_id', 'sku_id', 'deleted_by', 'deleted_at'):
        op.create_index(f'ix_movement_deletion_audit_{column}', 'movement_deletion_audit', [column])


def downgrade():
    op.drop_table('movement_deletion_audit')
