"""Initial schema - positions, benefit ledger, commissions, wallets, processing ledger

Revision ID: 001
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(precision=28, scale=8)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, comment='Row creation time (UTC)'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, comment='Last modification time (UTC)'),
    ]


def upgrade() -> None:
    op.create_table('positions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='Owner of the position'),
        sa.Column('principal', MONEY, nullable=False, comment='Funded amount the daily rate applies to'),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, comment='pending_payment, confirming, active, completed, expired, cancelled'),
        sa.Column('activated_at', sa.DateTime(), nullable=True, comment='When payment was confirmed; day zero of the benefit plan'),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('daily_rate', sa.Numeric(precision=10, scale=6), nullable=False, comment='Fraction of principal paid per benefit day'),
        sa.Column('days_per_cycle', sa.Integer(), nullable=False),
        sa.Column('total_cycles', sa.Integer(), nullable=False),
        sa.Column('current_cycle', sa.Integer(), nullable=False),
        sa.Column('current_day', sa.Integer(), nullable=False),
        sa.Column('total_benefits_paid', MONEY, nullable=False),
        sa.Column('last_accrual_date', sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_positions_user_id', 'positions', ['user_id'])
    op.create_index('idx_position_status_activated', 'positions', ['status', 'activated_at'])

    op.create_table('balance_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('transaction_type', sa.String(length=30), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('balance_after', MONEY, nullable=False),
        sa.Column('reference_type', sa.String(length=30), nullable=False, comment='benefit_ledger or commission'),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('position_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('processed_by', sa.String(length=40), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_balance_transactions_user_id', 'balance_transactions', ['user_id'])
    op.create_index('idx_balance_tx_reference', 'balance_transactions', ['reference_type', 'reference_id'])

    op.create_table('user_balances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('available', MONEY, nullable=False),
        sa.Column('total', MONEY, nullable=False, comment='Lifetime credited'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'currency', name='uq_balance_user_currency')
    )

    op.create_table('benefit_ledger',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('position_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('cycle', sa.Integer(), nullable=False, comment='1-based cycle number'),
        sa.Column('day', sa.Integer(), nullable=False, comment='1-based day within the cycle'),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('daily_rate', sa.Numeric(precision=10, scale=6), nullable=False),
        sa.Column('base_amount', MONEY, nullable=False, comment='Principal the rate was applied to'),
        sa.Column('scheduled_date', sa.Date(), nullable=False, comment='Business day (reference timezone) this benefit belongs to'),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('transaction_id', sa.Integer(), nullable=True, comment='Balance transaction that credited this benefit'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['position_id'], ['positions.id']),
        sa.ForeignKeyConstraint(['transaction_id'], ['balance_transactions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('position_id', 'cycle', 'day', 'scheduled_date', name='uq_benefit_position_cycle_day_date')
    )
    op.create_index('ix_benefit_ledger_position_id', 'benefit_ledger', ['position_id'])
    op.create_index('ix_benefit_ledger_user_id', 'benefit_ledger', ['user_id'])
    op.create_index('idx_benefit_user_date', 'benefit_ledger', ['user_id', 'scheduled_date'])

    op.create_table('commissions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('recipient_user_id', sa.String(length=64), nullable=False, comment='User receiving the commission'),
        sa.Column('source_user_id', sa.String(length=64), nullable=False, comment="User whose activity generated the commission"),
        sa.Column('position_id', sa.Integer(), nullable=True),
        sa.Column('commission_type', sa.String(length=20), nullable=False, comment='direct, team, binary or leadership'),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('unlock_date', sa.Date(), nullable=False, comment='First business day on which the commission may be unlocked'),
        sa.Column('unlocked_at', sa.DateTime(), nullable=True),
        sa.Column('transaction_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['position_id'], ['positions.id']),
        sa.ForeignKeyConstraint(['transaction_id'], ['balance_transactions.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_commissions_recipient_user_id', 'commissions', ['recipient_user_id'])
    op.create_index('idx_commission_status_unlock', 'commissions', ['status', 'unlock_date'])

    op.create_table('wallets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('address', sa.String(length=128), nullable=False, comment='On-chain address'),
        sa.Column('network', sa.String(length=20), nullable=False, comment='e.g. BEP20, TRC20'),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('shown_count', sa.Integer(), nullable=False, comment='Times this address was handed out'),
        sa.Column('last_shown_at', sa.DateTime(), nullable=False, comment='Last allocation time; epoch when never shown'),
        sa.Column('label', sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('address')
    )
    op.create_index('idx_wallet_rotation', 'wallets', ['network', 'currency', 'status', 'shown_count', 'last_shown_at'])

    op.create_table('daily_processing_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_type', sa.String(length=40), nullable=False),
        sa.Column('process_date', sa.Date(), nullable=False, comment='Business day being processed'),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('processed_count', sa.Integer(), nullable=False),
        sa.Column('skipped_count', sa.Integer(), nullable=False),
        sa.Column('error_count', sa.Integer(), nullable=False),
        sa.Column('total_amount', MONEY, nullable=False),
        sa.Column('duration_ms', sa.BigInteger(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('triggered_by', sa.String(length=20), nullable=False, comment='scheduler, manual or catchup'),
        sa.Column('actor_id', sa.String(length=64), nullable=True, comment='Admin who triggered a manual run'),
        sa.Column('timezone', sa.String(length=64), nullable=False),
        sa.Column('attempt_count', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('job_type', 'process_date', name='uq_processing_job_date')
    )
    op.create_index('idx_processing_status', 'daily_processing_records', ['status', 'started_at'])

    op.create_table('job_locks',
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('lock_until', sa.DateTime(), nullable=False, comment='Lock expires at this UTC time'),
        sa.Column('owner', sa.String(length=64), nullable=False, comment='Token of the instance holding the lock'),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('name')
    )


def downgrade() -> None:
    op.drop_table('job_locks')
    op.drop_index('idx_processing_status', table_name='daily_processing_records')
    op.drop_table('daily_processing_records')
    op.drop_index('idx_wallet_rotation', table_name='wallets')
    op.drop_table('wallets')
    op.drop_index('idx_commission_status_unlock', table_name='commissions')
    op.drop_index('ix_commissions_recipient_user_id', table_name='commissions')
    op.drop_table('commissions')
    op.drop_index('idx_benefit_user_date', table_name='benefit_ledger')
    op.drop_index('ix_benefit_ledger_user_id', table_name='benefit_ledger')
    op.drop_index('ix_benefit_ledger_position_id', table_name='benefit_ledger')
    op.drop_table('benefit_ledger')
    op.drop_table('user_balances')
    op.drop_index('idx_balance_tx_reference', table_name='balance_transactions')
    op.drop_index('ix_balance_transactions_user_id', table_name='balance_transactions')
    op.drop_table('balance_transactions')
    op.drop_index('idx_position_status_activated', table_name='positions')
    op.drop_index('ix_positions_user_id', table_name='positions')
    op.drop_table('positions')
