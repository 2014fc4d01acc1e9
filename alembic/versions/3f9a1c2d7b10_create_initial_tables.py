"""create users, passwords, login sessions, sequence counters and gmail tokens

Revision ID: 3f9a1c2d7b10
Revises:
Create Date: 2026-10-17 10:12:41.118203
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('first_name', sa.String(length=50), nullable=False),
        sa.Column('last_name', sa.String(length=50), nullable=False),
        sa.Column('middle_name', sa.String(length=50), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=50), nullable=False),
        sa.Column('phone_country_code', sa.String(length=8), nullable=False),
        sa.Column('gender', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_phone', 'users', ['phone'], unique=True)
    op.create_index('ix_users_status', 'users', ['status'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])

    op.create_table(
        'user_passwords',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('password', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_passwords_email', 'user_passwords', ['email'])
    op.create_index('ix_user_passwords_user_id', 'user_passwords', ['user_id'])
    op.create_index('ix_user_passwords_created_at', 'user_passwords', ['created_at'])
    # 同一個 email 只能有一組 active 密碼
    op.create_index(
        'uq_user_passwords_active_email', 'user_passwords', ['email'], unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        'login_sessions',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.String(length=32), nullable=False),
        sa.Column('status', sa.Integer(), nullable=False),
        sa.Column('validity_end_date', sa.DateTime(), nullable=False),
        sa.Column('logged_out', sa.Boolean(), nullable=False),
        sa.Column('expired', sa.Boolean(), nullable=False),
        sa.Column('os', sa.String(length=100), nullable=True),
        sa.Column('version', sa.String(length=100), nullable=True),
        sa.Column('device', sa.String(length=255), nullable=True),
        sa.Column('ip', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_login_sessions_user_id', 'login_sessions', ['user_id'])
    op.create_index('ix_login_sessions_created_at', 'login_sessions', ['created_at'])
    # 每位使用者最多一個 status = ON 的 session
    op.create_index(
        'uq_login_sessions_active_user', 'login_sessions', ['user_id'], unique=True,
        sqlite_where=sa.text("status = 1"),
        postgresql_where=sa.text("status = 1"),
    )

    op.create_table(
        'sequence_counters',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('current_count', sa.Integer(), nullable=False),
        sa.Column('previous_counter_id', sa.String(length=32), nullable=True),
        sa.Column('next_counter_id', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['previous_counter_id'], ['sequence_counters.id']),
        sa.ForeignKeyConstraint(['next_counter_id'], ['sequence_counters.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sequence_counters_name', 'sequence_counters', ['name'], unique=True)
    op.create_index('ix_sequence_counters_created_at', 'sequence_counters', ['created_at'])

    op.create_table(
        'gmail_tokens',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.String(length=32), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('token', sa.Text(), nullable=False),
        sa.Column('scope', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('history_id', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_gmail_tokens_user_id', 'gmail_tokens', ['user_id'])
    op.create_index('ix_gmail_tokens_email', 'gmail_tokens', ['email'])
    op.create_index('ix_gmail_tokens_created_at', 'gmail_tokens', ['created_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('gmail_tokens')
    op.drop_table('sequence_counters')
    op.drop_table('login_sessions')
    op.drop_table('user_passwords')
    op.drop_table('users')
