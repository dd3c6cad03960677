"""Create social_connections

Revision ID: 001
Revises: 
Create Date: 2026-10-18 12:00:00.000000

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
    op.create_table(
        'social_connections',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('platform', sa.String(length=50), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refresh_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('scopes', sa.JSON(), nullable=True),
        sa.Column('platform_account_id', sa.String(length=255), nullable=True),
        sa.Column('platform_account_name', sa.String(length=255), nullable=True),
        sa.Column('extra_data', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_social_connections_id', 'social_connections', ['id'])
    op.create_index('ix_social_connections_user_id', 'social_connections', ['user_id'])
    op.create_index('ix_social_connections_user_platform', 'social_connections', ['user_id', 'platform'])

    # A NULL account id must still take part in uniqueness
    op.execute(
        "CREATE UNIQUE INDEX uq_social_connections_identity ON social_connections "
        "(user_id, platform, COALESCE(platform_account_id, ''))"
    )


def downgrade() -> None:
    op.drop_index('uq_social_connections_identity', table_name='social_connections')
    op.drop_index('ix_social_connections_user_platform', table_name='social_connections')
    op.drop_index('ix_social_connections_user_id', table_name='social_connections')
    op.drop_index('ix_social_connections_id', table_name='social_connections')
    op.drop_table('social_connections')
