"""add_wire_mesh_width_fields

Revision ID: c4e6a8b0d2f1
Revises: a1c3e5f7b9d2
Create Date: 2026-10-18 10:05:12.402118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c4e6a8b0d2f1'
down_revision: Union[str, None] = 'a1c3e5f7b9d2'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Roll width of wire mesh batches and of the transactions drawn from them
    op.add_column('simple_batch', sa.Column('width', sa.Numeric(10, 4), nullable=True))
    op.add_column('simple_batch', sa.Column('width_unit', sa.String(20), nullable=True))
    op.add_column('stock_transaction', sa.Column('width', sa.Numeric(10, 4), nullable=True))
    op.add_column('stock_transaction', sa.Column('width_unit', sa.String(20), nullable=True))

    # Piece size of wire mesh demands
    op.add_column('order_material_demand', sa.Column('width', sa.Numeric(10, 4), nullable=True))
    op.add_column('order_material_demand', sa.Column('length', sa.Numeric(10, 4), nullable=True))
    op.add_column('order_material_demand', sa.Column('dimension_unit', sa.String(20), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table('order_material_demand') as batch_op:
        batch_op.drop_column('dimension_unit')
        batch_op.drop_column('length')
        batch_op.drop_column('width')

    with op.batch_alter_table('stock_transaction') as batch_op:
        batch_op.drop_column('width_unit')
        batch_op.drop_column('width')

    with op.batch_alter_table('simple_batch') as batch_op:
        batch_op.drop_column('width_unit')
        batch_op.drop_column('width')
