"""Reward submission tracking on reward_queue

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 18:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('reward_queue', sa.Column('submitted_tx_hash', sa.String(length=128), nullable=True))
    op.add_column('reward_queue', sa.Column('submitted_nonce', sa.Integer(), nullable=True))
    op.add_column('reward_queue', sa.Column('submitted_raw_tx', sa.Text(), nullable=True))
    op.add_column('reward_queue', sa.Column('submitted_at', sa.DateTime(), nullable=True))


def downgrade() -> None:
    op.drop_column('reward_queue', 'submitted_at')
    op.drop_column('reward_queue', 'submitted_raw_tx')
    op.drop_column('reward_queue', 'submitted_nonce')
    op.drop_column('reward_queue', 'submitted_tx_hash')
