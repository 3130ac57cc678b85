"""Initial schema - fundings, address pool, reward queue, logs, worker health

Revision ID: 001
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Enum columns are stored as plain strings (native_enum=False)

    # Create funding_records table
    op.create_table('funding_records',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('requester_address', sa.String(length=128), nullable=False, comment='Address the reward is paid to'),
        sa.Column('chain', sa.String(length=3), nullable=False, comment='Deposit chain'),
        sa.Column('deposit_address', sa.String(length=128), nullable=False, comment='Pool-assigned receiving address'),
        sa.Column('requested_amount', sa.Numeric(precision=38, scale=18), nullable=True, comment='Requested amount in native units'),
        sa.Column('status', sa.String(length=11), nullable=False, comment='Lifecycle status'),
        sa.Column('funded_amount', sa.Numeric(precision=38, scale=18), nullable=True, comment='Amount received, set on confirmation'),
        sa.Column('funding_tx_hash', sa.String(length=128), nullable=True, comment='Inbound transaction hash'),
        sa.Column('reward_tx_hash', sa.String(length=128), nullable=True, comment='Reward transfer transaction hash'),
        sa.Column('reward_amount', sa.Numeric(precision=38, scale=18), nullable=True, comment='Reward tokens sent'),
        sa.Column('confirmations', sa.Integer(), nullable=False, comment='Last observed confirmation depth'),
        sa.Column('min_confirmations', sa.Integer(), nullable=False, comment='Confirmations required for this chain'),
        sa.Column('expires_at', sa.DateTime(), nullable=False, comment='Deposit window end (UTC)'),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True, comment='Last reward failure, if any'),
        sa.Column('created_at', sa.DateTime(), nullable=False, comment='Creation time (UTC)'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, comment='Last update time (UTC)'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_funding_status_created', 'funding_records', ['status', 'created_at'])
    op.create_index('idx_funding_status_expires', 'funding_records', ['status', 'expires_at'])
    op.create_index('idx_funding_deposit_address', 'funding_records', ['deposit_address'])
    op.create_index('idx_funding_requester', 'funding_records', ['requester_address'])

    # Create address_pool table
    op.create_table('address_pool',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('chain', sa.String(length=3), nullable=False),
        sa.Column('address', sa.String(length=128), nullable=False),
        sa.Column('encrypted_private_key', sa.Text(), nullable=True, comment='Fernet token; null when custody stays with the node or xpub'),
        sa.Column('derivation_index', sa.Integer(), nullable=False),
        sa.Column('is_used', sa.Boolean(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, comment='Creation time (UTC)'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, comment='Last update time (UTC)'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('address'),
        sa.UniqueConstraint('chain', 'derivation_index', name='uq_address_pool_chain_index')
    )
    op.create_index('idx_address_pool_unused', 'address_pool', ['chain', 'is_used', 'created_at'])

    # Create reward_queue table
    op.create_table('reward_queue',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('funding_id', sa.String(length=36), nullable=False),
        sa.Column('requester_address', sa.String(length=128), nullable=False),
        sa.Column('funded_amount', sa.Numeric(precision=38, scale=18), nullable=False),
        sa.Column('chain', sa.String(length=3), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=10), nullable=False),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('reward_tx_hash', sa.String(length=128), nullable=True),
        sa.Column('reward_amount', sa.Numeric(precision=38, scale=18), nullable=True),
        sa.Column('processing_started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, comment='Creation time (UTC)'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, comment='Last update time (UTC)'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('funding_id')
    )
    op.create_index('idx_reward_queue_next', 'reward_queue', ['status', 'priority', 'created_at'])
    op.create_index('idx_reward_queue_failed', 'reward_queue', ['status', 'retry_count'])

    # Create reward_logs table
    op.create_table('reward_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('funding_id', sa.String(length=36), nullable=False),
        sa.Column('queue_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=9), nullable=False),
        sa.Column('tx_hash', sa.String(length=128), nullable=True),
        sa.Column('reward_amount', sa.Numeric(precision=38, scale=18), nullable=True),
        sa.Column('usd_value', sa.Numeric(precision=20, scale=2), nullable=True),
        sa.Column('gas_used', sa.BigInteger(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_reward_logs_funding', 'reward_logs', ['funding_id'])
    op.create_index('idx_reward_logs_created', 'reward_logs', ['created_at'])

    # Create worker_health table
    op.create_table('worker_health',
        sa.Column('worker_name', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=7), nullable=False),
        sa.Column('last_heartbeat', sa.DateTime(), nullable=False),
        sa.Column('processed_count', sa.Integer(), nullable=False),
        sa.Column('error_count', sa.Integer(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='Worker-specific details of the last cycle'),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, comment='Creation time (UTC)'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, comment='Last update time (UTC)'),
        sa.PrimaryKeyConstraint('worker_name')
    )


def downgrade() -> None:
    op.drop_table('worker_health')
    op.drop_index('idx_reward_logs_created', table_name='reward_logs')
    op.drop_index('idx_reward_logs_funding', table_name='reward_logs')
    op.drop_table('reward_logs')
    op.drop_index('idx_reward_queue_failed', table_name='reward_queue')
    op.drop_index('idx_reward_queue_next', table_name='reward_queue')
    op.drop_table('reward_queue')
    op.drop_index('idx_address_pool_unused', table_name='address_pool')
    op.drop_table('address_pool')
    op.drop_index('idx_funding_requester', table_name='funding_records')
    op.drop_index('idx_funding_deposit_address', table_name='funding_records')
    op.drop_index('idx_funding_status_expires', table_name='funding_records')
    op.drop_index('idx_funding_status_created', table_name='funding_records')
    op.drop_table('funding_records')
