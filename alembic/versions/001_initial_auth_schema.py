"""Initial schema for accounts, codes, sessions and tokens

Revision ID: 001_initial_auth_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_auth_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create users table
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('username', sa.String(32), nullable=False, unique=True),
        sa.Column('display_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(255), nullable=True),
        sa.Column('password_updated_at', sa.DateTime(), nullable=True),
        sa.Column('password_history', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('role', sa.String(20), nullable=False, server_default='customer'),
        sa.Column('token_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('totp_mfa_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('totp_mfa_secret', sa.String(255), nullable=True),
        sa.Column('totp_pending_secret', sa.String(255), nullable=True),
        sa.Column('email_mfa_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_sign_in_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_username', 'users', ['username'])

    # Create email_verification_codes table
    op.create_table(
        'email_verification_codes',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('code', sa.String(6), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('last_requested_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'type', name='uq_verification_code_user_type'),
    )
    op.create_index('ix_email_verification_codes_expires_at', 'email_verification_codes', ['expires_at'])

    # Create mfa_recovery_codes table
    op.create_table(
        'mfa_recovery_codes',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('code_hash', sa.String(255), nullable=False),
        sa.Column('used', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('used_from_ip', sa.String(64), nullable=True),
        sa.Column('used_from_user_agent', sa.String(512), nullable=True),
        sa.Column('failed_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_mfa_recovery_codes_user_id_used', 'mfa_recovery_codes', ['user_id', 'used'])

    # Create sessions table
    op.create_table(
        'sessions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('device_name', sa.String(100), nullable=False, server_default='Unknown Device'),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.String(512), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('last_used_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_sessions_user_id_active', 'sessions', ['user_id', 'is_active'])

    # Create tokens table
    op.create_table(
        'tokens',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('jti', sa.String(36), nullable=False, unique=True),
        sa.Column('access_jti', sa.String(36), nullable=False, unique=True),
        sa.Column('parent_jti', sa.String(36), nullable=True),
        sa.Column('family_id', sa.String(36), nullable=False),
        sa.Column('generation', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('access_expires_at', sa.DateTime(), nullable=False),
        sa.Column('refresh_expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('revoked_reason', sa.String(40), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_tokens_jti', 'tokens', ['jti'])
    op.create_index('ix_tokens_access_jti', 'tokens', ['access_jti'])
    op.create_index('ix_tokens_family_id', 'tokens', ['family_id'])
    op.create_index('ix_tokens_user_id_revoked', 'tokens', ['user_id', 'is_revoked'])


def downgrade() -> None:
    op.drop_table('tokens')
    op.drop_table('sessions')
    op.drop_table('mfa_recovery_codes')
    op.drop_table('email_verification_codes')
    op.drop_table('users')
