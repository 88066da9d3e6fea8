"""create_cutting_inventory_tables

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-12 11:20:41.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f7b9d2'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _audit_columns():
    return [
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    # Material master and its reference data
    op.create_table(
        'material_master',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('frontend_id', sa.String(50), nullable=True),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('category', sa.String(30), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('brand', sa.String(100), nullable=True),
        sa.Column('hsn_code', sa.String(20), nullable=True),
        sa.Column('stock_unit', sa.String(20), nullable=False),
        sa.Column('usage_unit', sa.String(20), nullable=False),
        sa.Column('cutting_tolerance', sa.Numeric(10, 4), nullable=False),
        sa.Column('kerf_length', sa.Numeric(10, 4), nullable=False),
        sa.Column('weight_unit', sa.String(10), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('total_current_stock', sa.Numeric(14, 4), nullable=False),
        sa.Column('total_current_weight', sa.Numeric(14, 4), nullable=False),
        sa.Column('total_current_value', sa.Numeric(16, 4), nullable=False),
        sa.Column('average_rate_per_piece', sa.Numeric(14, 4), nullable=False),
        sa.Column('average_rate_per_kg', sa.Numeric(14, 4), nullable=False),
        sa.Column('totals_updated_at', sa.DateTime(), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint('company_id', 'name', name='uq_material_company_name'),
    )
    op.create_index('ix_material_master_id', 'material_master', ['id'])
    op.create_index('ix_material_master_frontend_id', 'material_master', ['frontend_id'], unique=True)
    op.create_index('ix_material_master_company_id', 'material_master', ['company_id'])
    op.create_index('ix_material_master_name', 'material_master', ['name'])
    op.create_index('ix_material_master_category', 'material_master', ['category'])

    op.create_table(
        'material_standard_length',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('material_id', sa.Uuid(), sa.ForeignKey('material_master.id'), nullable=False),
        sa.Column('length', sa.Numeric(10, 4), nullable=False),
        sa.Column('unit', sa.String(20), nullable=False),
        sa.UniqueConstraint('material_id', 'length', 'unit', name='uq_standard_length'),
    )
    op.create_index('ix_material_standard_length_id', 'material_standard_length', ['id'])
    op.create_index('ix_material_standard_length_material_id', 'material_standard_length', ['material_id'])

    op.create_table(
        'material_gauge_weight',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('material_id', sa.Uuid(), sa.ForeignKey('material_master.id'), nullable=False),
        sa.Column('gauge', sa.String(20), nullable=False),
        sa.Column('weight_per_unit_length', sa.Numeric(12, 6), nullable=False),
        sa.Column('unit_length', sa.String(20), nullable=False),
        sa.UniqueConstraint('material_id', 'gauge', name='uq_gauge_weight'),
    )
    op.create_index('ix_material_gauge_weight_id', 'material_gauge_weight', ['id'])
    op.create_index('ix_material_gauge_weight_material_id', 'material_gauge_weight', ['material_id'])

    # Stock batches
    op.create_table(
        'profile_batch',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('frontend_id', sa.String(50), nullable=True),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('material_id', sa.Uuid(), sa.ForeignKey('material_master.id'), nullable=False),
        sa.Column('batch_code', sa.String(50), nullable=True),
        sa.Column('length', sa.Numeric(10, 4), nullable=False),
        sa.Column('length_unit', sa.String(20), nullable=False),
        sa.Column('gauge', sa.String(20), nullable=False),
        sa.Column('original_quantity', sa.Numeric(12, 4), nullable=False),
        sa.Column('current_quantity', sa.Numeric(12, 4), nullable=False),
        sa.Column('actual_total_weight', sa.Numeric(14, 4), nullable=True),
        sa.Column('actual_weight_unit', sa.String(10), nullable=False),
        sa.Column('total_cost_paid', sa.Numeric(16, 4), nullable=False),
        sa.Column('rate_per_piece', sa.Numeric(14, 4), nullable=False),
        sa.Column('rate_per_kg', sa.Numeric(14, 4), nullable=True),
        sa.Column('supplier', sa.String(255), nullable=True),
        sa.Column('purchase_date', sa.DateTime(), nullable=False),
        sa.Column('invoice_number', sa.String(100), nullable=True),
        sa.Column('lot_number', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('low_stock_threshold', sa.Numeric(12, 4), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_completed', sa.Boolean(), nullable=False),
        *_audit_columns(),
        sa.CheckConstraint('current_quantity >= 0', name='ck_profile_batch_non_negative'),
        sa.CheckConstraint('current_quantity <= original_quantity', name='ck_profile_batch_not_above_original'),
    )
    for column, unique in [
        ('id', False), ('frontend_id', True), ('company_id', False), ('material_id', False),
        ('batch_code', False), ('gauge', False), ('supplier', False), ('purchase_date', False),
        ('is_active', False), ('is_completed', False),
    ]:
        op.create_index(f'ix_profile_batch_{column}', 'profile_batch', [column], unique=unique)

    op.create_table(
        'simple_batch',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('frontend_id', sa.String(50), nullable=True),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('material_id', sa.Uuid(), sa.ForeignKey('material_master.id'), nullable=False),
        sa.Column('batch_code', sa.String(50), nullable=True),
        sa.Column('unit', sa.String(20), nullable=False),
        sa.Column('original_quantity', sa.Numeric(12, 4), nullable=False),
        sa.Column('current_quantity', sa.Numeric(12, 4), nullable=False),
        sa.Column('total_cost_paid', sa.Numeric(16, 4), nullable=False),
        sa.Column('rate_per_unit', sa.Numeric(14, 4), nullable=False),
        sa.Column('supplier', sa.String(255), nullable=True),
        sa.Column('purchase_date', sa.DateTime(), nullable=False),
        sa.Column('invoice_number', sa.String(100), nullable=True),
        sa.Column('lot_number', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('low_stock_threshold', sa.Numeric(12, 4), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_completed', sa.Boolean(), nullable=False),
        *_audit_columns(),
        sa.CheckConstraint('current_quantity >= 0', name='ck_simple_batch_non_negative'),
        sa.CheckConstraint('current_quantity <= original_quantity', name='ck_simple_batch_not_above_original'),
    )
    for column, unique in [
        ('id', False), ('frontend_id', True), ('company_id', False), ('material_id', False),
        ('batch_code', False), ('supplier', False), ('purchase_date', False),
        ('is_active', False), ('is_completed', False),
    ]:
        op.create_index(f'ix_simple_batch_{column}', 'simple_batch', [column], unique=unique)

    # Orders
    op.create_table(
        'order_master',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('frontend_id', sa.String(50), nullable=True),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('client_name', sa.String(255), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('cutting_plan_status', sa.String(20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_audit_columns(),
    )
    op.create_index('ix_order_master_id', 'order_master', ['id'])
    op.create_index('ix_order_master_frontend_id', 'order_master', ['frontend_id'], unique=True)
    op.create_index('ix_order_master_company_id', 'order_master', ['company_id'])
    op.create_index('ix_order_master_status', 'order_master', ['status'])

    op.create_table(
        'order_required_cut',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('order_master.id'), nullable=False),
        sa.Column('material_id', sa.Uuid(), sa.ForeignKey('material_master.id'), nullable=False),
        sa.Column('gauge', sa.String(20), nullable=True),
        sa.Column('length', sa.Numeric(10, 4), nullable=False),
        sa.Column('length_unit', sa.String(20), nullable=False),
        sa.Column('identifier', sa.String(100), nullable=True),
        sa.Column('source_item', sa.String(100), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=False),
    )
    op.create_index('ix_order_required_cut_id', 'order_required_cut', ['id'])
    op.create_index('ix_order_required_cut_order_id', 'order_required_cut', ['order_id'])
    op.create_index('ix_order_required_cut_material_id', 'order_required_cut', ['material_id'])

    op.create_table(
        'order_material_demand',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('order_master.id'), nullable=False),
        sa.Column('material_id', sa.Uuid(), sa.ForeignKey('material_master.id'), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 4), nullable=False),
        sa.Column('unit', sa.String(20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
    )
    op.create_index('ix_order_material_demand_id', 'order_material_demand', ['id'])
    op.create_index('ix_order_material_demand_order_id', 'order_material_demand', ['order_id'])
    op.create_index('ix_order_material_demand_material_id', 'order_material_demand', ['material_id'])

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('order_master.id'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('updated_by', sa.Uuid(), nullable=True),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_order_status_history_id', 'order_status_history', ['id'])
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    # Cutting plans
    op.create_table(
        'cutting_plan',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('frontend_id', sa.String(50), nullable=True),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('order_master.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('optimizer_strategy', sa.String(20), nullable=False),
        sa.Column('material_plans', sa.Text(), nullable=False),
        sa.Column('shortfall_warnings', sa.Text(), nullable=True),
        sa.Column('generated_by', sa.Uuid(), nullable=True),
        sa.Column('generated_at', sa.DateTime(), nullable=False),
        sa.Column('committed_by', sa.Uuid(), nullable=True),
        sa.Column('committed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_cutting_plan_id', 'cutting_plan', ['id'])
    op.create_index('ix_cutting_plan_frontend_id', 'cutting_plan', ['frontend_id'], unique=True)
    op.create_index('ix_cutting_plan_company_id', 'cutting_plan', ['company_id'])
    op.create_index('ix_cutting_plan_order_id', 'cutting_plan', ['order_id'], unique=True)
    op.create_index('ix_cutting_plan_status', 'cutting_plan', ['status'])

    # Stock ledger
    op.create_table(
        'stock_transaction',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('frontend_id', sa.String(50), nullable=True),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('material_id', sa.Uuid(), sa.ForeignKey('material_master.id'), nullable=False),
        sa.Column('batch_kind', sa.String(10), nullable=True),
        sa.Column('batch_id', sa.Uuid(), nullable=True),
        sa.Column('batch_code', sa.String(50), nullable=True),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('length', sa.Numeric(10, 4), nullable=True),
        sa.Column('length_unit', sa.String(20), nullable=True),
        sa.Column('gauge', sa.String(20), nullable=True),
        sa.Column('quantity_change', sa.Numeric(12, 4), nullable=False),
        sa.Column('quantity_unit', sa.String(20), nullable=False),
        sa.Column('unit_rate_at_transaction', sa.Numeric(14, 4), nullable=True),
        sa.Column('total_value_change', sa.Numeric(16, 4), nullable=False),
        sa.Column('related_document_type', sa.String(30), nullable=True),
        sa.Column('related_document_id', sa.Uuid(), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('transaction_date', sa.DateTime(), nullable=False),
    )
    for column, unique in [
        ('id', False), ('frontend_id', True), ('company_id', False), ('material_id', False),
        ('batch_id', False), ('type', False), ('related_document_id', False), ('transaction_date', False),
    ]:
        op.create_index(f'ix_stock_transaction_{column}', 'stock_transaction', [column], unique=unique)


def downgrade() -> None:
    # Drop in reverse dependency order; indexes go with their tables
    op.drop_table('stock_transaction')
    op.drop_table('cutting_plan')
    op.drop_table('order_status_history')
    op.drop_table('order_material_demand')
    op.drop_table('order_required_cut')
    op.drop_table('order_master')
    op.drop_table('simple_batch')
    op.drop_table('profile_batch')
    op.drop_table('material_gauge_weight')
    op.drop_table('material_standard_length')
    op.drop_table('material_master')
