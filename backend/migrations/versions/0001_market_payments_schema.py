"""market payments schema

Revision ID: 0001_market_payments
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the market registry the payment core reads (sections, stalls,
stores, owners, contracts, attendances) and the payment ledger it owns:
- transactions: one row per payment attempt, keyed by external_reference
- click_transactions: Click prepare records (merchant_prepare_id)
- contract_payment_periods: one row per contract month accounted for
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_market_payments'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """
    Create all tables from scratch.

    WHY: Uniqueness on transactions.external_reference,
    click_transactions.click_trans_id and (contract_id, period_start) is
    what makes gateway redeliveries idempotent, so it lives in the schema
    rather than in application checks alone.
    """

    # ============================================================================
    # Market registry
    # ============================================================================
    op.create_table(
        'sections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_sections'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'stalls',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('stall_number', sa.String(length=32), nullable=False),
        sa.Column('section_id', sa.Integer(), nullable=True),
        sa.Column('daily_fee', sa.Numeric(14, 2), nullable=True),
        sa.ForeignKeyConstraint(['section_id'], ['sections.id'], name='fk_stalls_section_id_sections'),
        sa.PrimaryKeyConstraint('id', name='pk_stalls'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stalls_stall_number', 'stalls', ['stall_number'])
    op.create_index('ix_stalls_section_id', 'stalls', ['section_id'])

    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_number', sa.String(length=32), nullable=False),
        sa.Column('section_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['section_id'], ['sections.id'], name='fk_stores_section_id_sections'),
        sa.PrimaryKeyConstraint('id', name='pk_stores'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stores_store_number', 'stores', ['store_number'], unique=True)
    op.create_index('ix_stores_section_id', 'stores', ['section_id'])

    op.create_table(
        'owners',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('tin', sa.String(length=32), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_owners'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_owners_tin', 'owners', ['tin'])

    op.create_table(
        'contracts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=True),
        sa.Column('shop_monthly_fee', sa.Numeric(14, 2), nullable=True),
        sa.Column('issue_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], name='fk_contracts_store_id_stores'),
        sa.ForeignKeyConstraint(['owner_id'], ['owners.id'], name='fk_contracts_owner_id_owners'),
        sa.PrimaryKeyConstraint('id', name='pk_contracts'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_contracts_store_id', 'contracts', ['store_id'])
    op.create_index('ix_contracts_owner_id', 'contracts', ['owner_id'])
    op.create_index('ix_contracts_is_active', 'contracts', ['is_active'])

    # transaction_id is a plain back-reference, no FK (avoids a DDL cycle)
    op.create_table(
        'attendances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('stall_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['stall_id'], ['stalls.id'], name='fk_attendances_stall_id_stalls'),
        sa.PrimaryKeyConstraint('id', name='pk_attendances'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_attendances_stall_id', 'attendances', ['stall_id'])
    op.create_index('ix_attendances_date', 'attendances', ['date'])
    op.create_index('ix_attendances_status', 'attendances', ['status'])
    op.create_index('ix_attendances_transaction_id', 'attendances', ['transaction_id'])
    op.create_index('ix_attendances_stall_date', 'attendances', ['stall_id', 'date'])

    # ============================================================================
    # transactions: unified payment ledger
    # ============================================================================
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('external_reference', sa.String(length=128), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('contract_id', sa.Integer(), nullable=True),
        sa.Column('attendance_id', sa.Integer(), nullable=True),
        sa.Column('gateway_state', sa.Integer(), nullable=False),
        sa.Column('cancel_reason', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('performed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.CheckConstraint('(contract_id IS NULL) <> (attendance_id IS NULL)',
                           name='ck_transactions_one_billable'),
        sa.ForeignKeyConstraint(['contract_id'], ['contracts.id'],
                                name='fk_transactions_contract_id_contracts'),
        sa.ForeignKeyConstraint(['attendance_id'], ['attendances.id'],
                                name='fk_transactions_attendance_id_attendances'),
        sa.PrimaryKeyConstraint('id', name='pk_transactions'),
        sa.UniqueConstraint('external_reference', name='uq_transactions_external_reference'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transactions_status', 'transactions', ['status'])
    op.create_index('ix_transactions_payment_method', 'transactions', ['payment_method'])
    op.create_index('ix_transactions_contract_id', 'transactions', ['contract_id'])
    op.create_index('ix_transactions_attendance_id', 'transactions', ['attendance_id'])
    op.create_index('ix_transactions_created_at', 'transactions', ['created_at'])
    op.create_index('ix_transactions_method_created', 'transactions', ['payment_method', 'created_at'])
    op.create_index('ix_transactions_contract_status', 'transactions', ['contract_id', 'status'])

    # ============================================================================
    # click_transactions: prepare/complete shadow records
    # ============================================================================
    op.create_table(
        'click_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('click_trans_id', sa.String(length=64), nullable=False),
        sa.Column('click_paydoc_id', sa.String(length=64), nullable=True),
        sa.Column('merchant_trans_id', sa.String(length=128), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('action', sa.Integer(), nullable=False),
        sa.Column('sign_time', sa.String(length=32), nullable=True),
        sa.Column('status', sa.Integer(), nullable=False),
        sa.Column('error', sa.Integer(), nullable=False),
        sa.Column('error_note', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'],
                                name='fk_click_transactions_transaction_id_transactions'),
        sa.PrimaryKeyConstraint('id', name='pk_click_transactions'),
        sa.UniqueConstraint('click_trans_id', name='uq_click_transactions_click_trans_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_click_transactions_merchant_trans_id', 'click_transactions', ['merchant_trans_id'])
    op.create_index('ix_click_transactions_transaction_id', 'click_transactions', ['transaction_id'])
    op.create_index('ix_click_transactions_status', 'click_transactions', ['status'])

    # ============================================================================
    # contract_payment_periods: one row per contract month
    # ============================================================================
    op.create_table(
        'contract_payment_periods',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('contract_id', sa.Integer(), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=True),
        sa.Column('transaction_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['contract_id'], ['contracts.id'],
                                name='fk_contract_payment_periods_contract_id_contracts'),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'],
                                name='fk_contract_payment_periods_transaction_id_transactions'),
        sa.PrimaryKeyConstraint('id', name='pk_contract_payment_periods'),
        sa.UniqueConstraint('contract_id', 'period_start', name='uq_contract_periods_contract_start'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_contract_payment_periods_contract_id', 'contract_payment_periods', ['contract_id'])
    op.create_index('ix_contract_payment_periods_transaction_id', 'contract_payment_periods', ['transaction_id'])
    op.create_index('ix_contract_periods_contract_status', 'contract_payment_periods',
                    ['contract_id', 'status', 'period_start'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('contract_payment_periods')
    op.drop_table('click_transactions')
    op.drop_table('transactions')
    op.drop_table('attendances')
    op.drop_table('contracts')
    op.drop_table('owners')
    op.drop_table('stores')
    op.drop_table('stalls')
    op.drop_table('sections')
