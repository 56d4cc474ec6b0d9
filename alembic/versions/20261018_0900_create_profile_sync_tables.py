"""create_profile_sync_tables

Creates the tables used by the profile link sync service:
- profile_links: external accounts linked to profiles
- profile_link_imports: remote items observed per link (soft-deleted, never removed)
- runtime_states: cross-instance key/value coordination entries
- audit_logs: sync activity trail

Revision ID: create_profile_sync_tables
Revises:
Create Date: 2026-10-18 09:00:00

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID


# revision identifiers, used by Alembic.
revision = 'create_profile_sync_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create profile sync tables and indexes."""

    op.create_table(
        'profile_links',
        sa.Column('id', PG_UUID(as_uuid=True), primary_key=True),
        sa.Column('profile_id', PG_UUID(as_uuid=True), nullable=False),
        sa.Column('kind', sa.String(50), nullable=False),
        sa.Column('remote_id', sa.String(255), nullable=True),
        sa.Column('is_managed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('auth_access_token', sa.Text(), nullable=True),
        sa.Column('auth_access_token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('auth_refresh_token', sa.Text(), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_profile_links_profile_id', 'profile_links', ['profile_id'])
    op.create_index('ix_profile_links_kind', 'profile_links', ['kind'])
    op.create_index('ix_profile_links_kind_managed', 'profile_links', ['kind', 'is_managed'])

    op.create_table(
        'profile_link_imports',
        sa.Column('id', PG_UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'profile_link_id',
            PG_UUID(as_uuid=True),
            sa.ForeignKey('profile_links.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('remote_id', sa.String(255), nullable=False),
        sa.Column('properties', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_profile_link_imports_profile_link_id', 'profile_link_imports', ['profile_link_id'])
    op.create_index(
        'ix_profile_link_imports_link_created', 'profile_link_imports', ['profile_link_id', 'created_at']
    )
    # At most one active import per (link, remote item)
    op.create_index(
        'uq_profile_link_imports_active_remote',
        'profile_link_imports',
        ['profile_link_id', 'remote_id'],
        unique=True,
        postgresql_where=sa.text('deleted_at IS NULL'),
    )

    op.create_table(
        'runtime_states',
        sa.Column('key', sa.String(255), primary_key=True),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', PG_UUID(as_uuid=True), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(255), nullable=False),
        sa.Column('actor_kind', sa.String(20), nullable=False),
        sa.Column('actor_id', sa.String(255), nullable=True),
        sa.Column('payload', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_audit_logs_event_type', 'audit_logs', ['event_type'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade() -> None:
    """Drop profile sync tables."""

    op.drop_index('ix_audit_logs_created_at', table_name='audit_logs')
    op.drop_index('ix_audit_logs_entity_type', table_name='audit_logs')
    op.drop_index('ix_audit_logs_event_type', table_name='audit_logs')
    op.drop_table('audit_logs')

    op.drop_table('runtime_states')

    op.drop_index('uq_profile_link_imports_active_remote', table_name='profile_link_imports')
    op.drop_index('ix_profile_link_imports_link_created', table_name='profile_link_imports')
    op.drop_index('ix_profile_link_imports_profile_link_id', table_name='profile_link_imports')
    op.drop_table('profile_link_imports')

    op.drop_index('ix_profile_links_kind_managed', table_name='profile_links')
    op.drop_index('ix_profile_links_kind', table_name='profile_links')
    op.drop_index('ix_profile_links_profile_id', table_name='profile_links')
    op.drop_table('profile_links')
