"""Create users, magic link, OTP and session tables

Revision ID: 001_auth_schema
Revises:
Create Date: 2025-09-01 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op  # type: ignore[attr-defined]
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_auth_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the credential and session tables."""
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(320), nullable=False, comment='Case-folded email address, the stable identity'),
        sa.Column('username', sa.String(30), nullable=True, comment='Lower-cased public handle, set once during onboarding'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True, comment='When a credential for this user was last consumed'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('username'),
    )

    op.create_table(
        'magic_link_tokens',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(320), nullable=False, comment='Case-folded recipient; unique so re-issuance supersedes'),
        sa.Column('token_hash', sa.String(64), nullable=False, comment='SHA-256 hex digest of the emailed token'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True, comment='Set once, when the link is consumed'),
        sa.Column('ip_created_from', sa.String(45), nullable=True),
        sa.Column('ua_created_from', sa.String(500), nullable=True),
        sa.Column('redirect_path', sa.String(500), nullable=True, comment='Relative path to land on after a returning user signs in'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('token_hash'),
    )
    op.create_index('ix_magic_link_tokens_expires_at', 'magic_link_tokens', ['expires_at'])

    op.create_table(
        'otp_tokens',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('code_hash', sa.String(64), nullable=False, comment='HMAC-SHA256 of the code, bound to the email'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0', comment='Verification attempts made against this code'),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ip_created_from', sa.String(45), nullable=True),
        sa.Column('ua_created_from', sa.String(500), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_otp_tokens_email', 'otp_tokens', ['email'])
    op.create_index('ix_otp_tokens_expires_at', 'otp_tokens', ['expires_at'])

    op.create_table(
        'user_sessions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('token_hash', sa.String(64), nullable=False, comment='SHA-256 hex digest of the session bearer'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, comment='Slides forward on every successful validation'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(100), nullable=True),
        sa.Column('ip_created_from', sa.String(45), nullable=True),
        sa.Column('ua_created_from', sa.String(500), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token_hash'),
    )
    op.create_index('ix_user_sessions_user_id', 'user_sessions', ['user_id'])


def downgrade() -> None:
    """Drop the credential and session tables."""
    op.drop_index('ix_user_sessions_user_id', table_name='user_sessions')
    op.drop_table('user_sessions')
    op.drop_index('ix_otp_tokens_expires_at', table_name='otp_tokens')
    op.drop_index('ix_otp_tokens_email', table_name='otp_tokens')
    op.drop_table('otp_tokens')
    op.drop_index('ix_magic_link_tokens_expires_at', table_name='magic_link_tokens')
    op.drop_table('magic_link_tokens')
    op.drop_table('users')
