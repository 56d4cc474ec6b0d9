"""add_link_full_fetch_and_stories

Adds per-link full-fetch tracking and the draft stories table:
- profile_links.syncs_since_full_fetch: incremental syncs since the link's
  last full fetch (NULL until the first one, which forces a full fetch)
- stories: draft stories created from link imports, one per import

Revision ID: add_link_full_fetch_and_stories
Revises: create_profile_sync_tables
Create Date: 2026-10-18 12:00:00

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID


# revision identifiers, used by Alembic.
revision = 'add_link_full_fetch_and_stories'
down_revision = 'create_profile_sync_tables'
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Add syncs_since_full_fetch and create the stories table."""

    op.add_column(
        'profile_links',
        sa.Column('syncs_since_full_fetch', sa.Integer(), nullable=True),
    )

    op.create_table(
        'stories',
        sa.Column('id', PG_UUID(as_uuid=True), primary_key=True),
        sa.Column('profile_id', PG_UUID(as_uuid=True), nullable=False),
        sa.Column(
            'profile_link_import_id',
            PG_UUID(as_uuid=True),
            sa.ForeignKey('profile_link_imports.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('kind', sa.String(50), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('picture_uri', sa.Text(), nullable=True),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('properties', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('profile_link_import_id', name='uq_stories_profile_link_import_id'),
    )
    op.create_index('ix_stories_profile_id', 'stories', ['profile_id'])


def downgrade() -> None:
    """Drop the stories table and syncs_since_full_fetch."""

    op.drop_index('ix_stories_profile_id', table_name='stories')
    op.drop_table('stories')

    op.drop_column('profile_links', 'syncs_since_full_fetch')
