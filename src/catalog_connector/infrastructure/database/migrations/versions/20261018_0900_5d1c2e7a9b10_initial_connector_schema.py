"""Initial connector schema

Tenant credentials, mirrored catalog entries and per-tenant sync status, plus
trigram indexes so case-insensitive substring search on title and description
stays index-backed.

Revision ID: 5d1c2e7a9b10
Revises:
Create Date: 2026-10-18 09:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5d1c2e7a9b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pg_trgm")

    # Create tenant_credentials table
    op.create_table('tenant_credentials',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('access_token', sa.Text(), nullable=False),
    sa.Column('scope', sa.String(length=1024), nullable=True),
    sa.Column('installed_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_tenant_credentials_shop'), 'tenant_credentials', ['shop'], unique=True)

    # Create catalog_entries table
    op.create_table('catalog_entries',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('external_id', sa.BigInteger(), nullable=False),
    sa.Column('title', sa.Text(), nullable=True),
    sa.Column('body_html', sa.Text(), nullable=True),
    sa.Column('synced_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('shop', 'external_id', name='uq_catalog_entries_shop_external_id'),
    )
    op.create_index('ix_catalog_entries_shop', 'catalog_entries', ['shop'], unique=False)

    # GIN trigram indexes for ILIKE '%...%' on title and description
    op.execute("""
        CREATE INDEX ix_catalog_entries_title_trgm
        ON catalog_entries
        USING GIN (title gin_trgm_ops)
    """)
    op.execute("""
        CREATE INDEX ix_catalog_entries_body_html_trgm
        ON catalog_entries
        USING GIN (body_html gin_trgm_ops)
    """)

    # Create sync_status table
    op.create_table('sync_status',
    sa.Column('shop', sa.String(length=255), nullable=False),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('last_started_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('last_finished_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('last_item_count', sa.Integer(), nullable=False),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.PrimaryKeyConstraint('shop'),
    )


def downgrade() -> None:
    op.drop_table('sync_status')
    op.execute("DROP INDEX IF EXISTS ix_catalog_entries_body_html_trgm")
    op.execute("DROP INDEX IF EXISTS ix_catalog_entries_title_trgm")
    op.drop_index('ix_catalog_entries_shop', table_name='catalog_entries')
    op.drop_table('catalog_entries')
    op.drop_index(op.f('ix_tenant_credentials_shop'), table_name='tenant_credentials')
    op.drop_table('tenant_credentials')
