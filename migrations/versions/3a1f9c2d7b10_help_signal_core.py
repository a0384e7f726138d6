"""Help signal core tables

Revision ID: 3a1f9c2d7b10
Revises:
Create Date: 2026-10-17 09:12:41.118204
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3a1f9c2d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.Text(), nullable=False),
        sa.Column('role', sa.String(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("role in ('student','caregiver','educator')", name='ck_users_role'),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'profiles',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('username', sa.String(50), nullable=False),
        # 코드 중복은 unique 제약으로 막음 (가입 시 재시도)
        sa.Column('student_code', sa.String(16), nullable=True, unique=True),
        sa.Column('caregiver_code', sa.String(16), nullable=True, unique=True),
        *_timestamps(),
    )
    op.create_index('ix_profiles_id', 'profiles', ['id'])
    op.create_index('ix_profiles_username', 'profiles', ['username'], unique=True)

    op.create_table(
        'connections',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('caregiver_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('student_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        *_timestamps(),
        sa.CheckConstraint("status in ('pending','active','blocked')", name='ck_connections_status'),
        sa.UniqueConstraint('caregiver_id', 'student_id', name='uq_connections_caregiver_student'),
    )
    op.create_index('ix_connections_id', 'connections', ['id'])
    op.create_index('idx_connections_caregiver', 'connections', ['caregiver_id'])
    op.create_index('idx_connections_student', 'connections', ['student_id'])

    op.create_table(
        'help_requests',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('student_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('message', sa.String(500), nullable=True),
        sa.Column('urgency', sa.String(), nullable=False, server_default='ok'),
        sa.Column('status', sa.String(), nullable=False, server_default='open'),
        sa.Column('resolved_by', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("urgency in ('ok','attention','urgent')", name='ck_help_requests_urgency'),
        sa.CheckConstraint("status in ('open','answered','closed')", name='ck_help_requests_status'),
    )
    op.create_index('ix_help_requests_id', 'help_requests', ['id'])
    op.create_index('idx_help_requests_student_time', 'help_requests', ['student_id', 'created_at'])

    op.create_table(
        'password_resets',
        sa.Column('id', sa.BigInteger(), primary_key=True),
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('token', sa.String(128), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_password_resets_id', 'password_resets', ['id'])
    op.create_index('ix_password_resets_token', 'password_resets', ['token'], unique=True)


def downgrade() -> None:
    op.drop_table('password_resets')
    op.drop_table('help_requests')
    op.drop_table('connections')
    op.drop_table('profiles')
    op.drop_table('users')
