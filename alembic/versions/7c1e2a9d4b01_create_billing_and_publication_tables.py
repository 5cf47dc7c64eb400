"""create billing and publication tables

Revision ID: 7c1e2a9d4b01
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '7c1e2a9d4b01'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create ownership chain, billing and publication audit tables"""
    op.create_table(
        'sites',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('external_site_id', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('base_url', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_sites_id'), 'sites', ['id'], unique=False)
    op.create_index(op.f('ix_sites_user_id'), 'sites', ['user_id'], unique=False)
    op.create_index(op.f('ix_sites_external_site_id'), 'sites', ['external_site_id'], unique=False)

    op.create_table(
        'integrations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('encrypted_store_key', sa.Text(), nullable=True),
        sa.Column('encrypted_generation_key', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_integrations_id'), 'integrations', ['id'], unique=False)
    op.create_index(op.f('ix_integrations_site_id'), 'integrations', ['site_id'], unique=True)

    op.create_table(
        'collections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('external_collection_id', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('slug', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_collections_id'), 'collections', ['id'], unique=False)
    op.create_index(op.f('ix_collections_user_id'), 'collections', ['user_id'], unique=False)
    op.create_index(op.f('ix_collections_site_id'), 'collections', ['site_id'], unique=False)
    op.create_index(op.f('ix_collections_external_collection_id'), 'collections', ['external_collection_id'], unique=False)

    op.create_table(
        'user_allowances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('free_generations_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('free_generation_limit', sa.Integer(), nullable=False),
        sa.Column('provider_customer_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            'free_generations_used >= 0 AND free_generations_used <= free_generation_limit',
            name='ck_user_allowances_used_within_limit'
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_user_allowances_id'), 'user_allowances', ['id'], unique=False)
    op.create_index(op.f('ix_user_allowances_user_id'), 'user_allowances', ['user_id'], unique=True)
    op.create_index(op.f('ix_user_allowances_provider_customer_id'), 'user_allowances', ['provider_customer_id'], unique=False)

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('provider_payment_intent_id', sa.String(), nullable=False),
        sa.Column('provider_checkout_session_id', sa.String(), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('collection_id', sa.Integer(), nullable=True),
        sa.Column('external_collection_id', sa.String(), nullable=True),
        sa.Column('collection_name', sa.String(), nullable=True),
        sa.Column('item_ids', sa.JSON(), nullable=False),
        sa.Column('item_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('generation_logs_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('generation_started', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('items_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('items_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_payment_intent_id', name='uq_payments_provider_payment_intent_id')
    )
    op.create_index(op.f('ix_payments_id'), 'payments', ['id'], unique=False)
    op.create_index(op.f('ix_payments_user_id'), 'payments', ['user_id'], unique=False)
    op.create_index(op.f('ix_payments_provider_payment_intent_id'), 'payments', ['provider_payment_intent_id'], unique=True)
    op.create_index(op.f('ix_payments_provider_checkout_session_id'), 'payments', ['provider_checkout_session_id'], unique=False)
    op.create_index(op.f('ix_payments_collection_id'), 'payments', ['collection_id'], unique=False)
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'], unique=False)
    op.create_index(op.f('ix_payments_created_at'), 'payments', ['created_at'], unique=False)

    op.create_table(
        'generation_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('collection_id', sa.Integer(), nullable=True),
        sa.Column('item_id', sa.String(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('is_free_tier', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_generation_logs_id'), 'generation_logs', ['id'], unique=False)
    op.create_index(op.f('ix_generation_logs_user_id'), 'generation_logs', ['user_id'], unique=False)
    op.create_index(op.f('ix_generation_logs_collection_id'), 'generation_logs', ['collection_id'], unique=False)
    op.create_index(op.f('ix_generation_logs_payment_id'), 'generation_logs', ['payment_id'], unique=False)
    op.create_index(op.f('ix_generation_logs_status'), 'generation_logs', ['status'], unique=False)
    op.create_index('idx_generation_logs_payment_item', 'generation_logs', ['payment_id', 'item_id'], unique=False)

    op.create_table(
        'publications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('collection_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('total_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_fields', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(), nullable=False, server_default='processing'),
        sa.Column('items_succeeded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('items_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('fields_succeeded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('fields_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_publications_id'), 'publications', ['id'], unique=False)
    op.create_index(op.f('ix_publications_collection_id'), 'publications', ['collection_id'], unique=False)
    op.create_index(op.f('ix_publications_user_id'), 'publications', ['user_id'], unique=False)
    op.create_index(op.f('ix_publications_status'), 'publications', ['status'], unique=False)
    op.create_index(op.f('ix_publications_started_at'), 'publications', ['started_at'], unique=False)

    op.create_table(
        'publication_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('publication_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=True),
        sa.Column('published_url', sa.String(), nullable=True),
        sa.Column('fields_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('fields_succeeded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('fields_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('applied_fields', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='processing'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['publication_id'], ['publications.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_publication_items_id'), 'publication_items', ['id'], unique=False)
    op.create_index(op.f('ix_publication_items_publication_id'), 'publication_items', ['publication_id'], unique=False)
    op.create_index(op.f('ix_publication_items_status'), 'publication_items', ['status'], unique=False)
    op.create_index('idx_publication_items_publication_item', 'publication_items', ['publication_id', 'item_id'], unique=False)


def downgrade():
    """Drop all tables in reverse dependency order"""
    op.drop_index('idx_publication_items_publication_item', table_name='publication_items')
    op.drop_index(op.f('ix_publication_items_status'), table_name='publication_items')
    op.drop_index(op.f('ix_publication_items_publication_id'), table_name='publication_items')
    op.drop_index(op.f('ix_publication_items_id'), table_name='publication_items')
    op.drop_table('publication_items')

    op.drop_index(op.f('ix_publications_started_at'), table_name='publications')
    op.drop_index(op.f('ix_publications_status'), table_name='publications')
    op.drop_index(op.f('ix_publications_user_id'), table_name='publications')
    op.drop_index(op.f('ix_publications_collection_id'), table_name='publications')
    op.drop_index(op.f('ix_publications_id'), table_name='publications')
    op.drop_table('publications')

    op.drop_index('idx_generation_logs_payment_item', table_name='generation_logs')
    op.drop_index(op.f('ix_generation_logs_status'), table_name='generation_logs')
    op.drop_index(op.f('ix_generation_logs_payment_id'), table_name='generation_logs')
    op.drop_index(op.f('ix_generation_logs_collection_id'), table_name='generation_logs')
    op.drop_index(op.f('ix_generation_logs_user_id'), table_name='generation_logs')
    op.drop_index(op.f('ix_generation_logs_id'), table_name='generation_logs')
    op.drop_table('generation_logs')

    op.drop_index(op.f('ix_payments_created_at'), table_name='payments')
    op.drop_index(op.f('ix_payments_status'), table_name='payments')
    op.drop_index(op.f('ix_payments_collection_id'), table_name='payments')
    op.drop_index(op.f('ix_payments_provider_checkout_session_id'), table_name='payments')
    op.drop_index(op.f('ix_payments_provider_payment_intent_id'), table_name='payments')
    op.drop_index(op.f('ix_payments_user_id'), table_name='payments')
    op.drop_index(op.f('ix_payments_id'), table_name='payments')
    op.drop_table('payments')

    op.drop_index(op.f('ix_user_allowances_provider_customer_id'), table_name='user_allowances')
    op.drop_index(op.f('ix_user_allowances_user_id'), table_name='user_allowances')
    op.drop_index(op.f('ix_user_allowances_id'), table_name='user_allowances')
    op.drop_table('user_allowances')

    op.drop_index(op.f('ix_collections_external_collection_id'), table_name='collections')
    op.drop_index(op.f('ix_collections_site_id'), table_name='collections')
    op.drop_index(op.f('ix_collections_user_id'), table_name='collections')
    op.drop_index(op.f('ix_collections_id'), table_name='collections')
    op.drop_table('collections')

    op.drop_index(op.f('ix_integrations_site_id'), table_name='integrations')
    op.drop_index(op.f('ix_integrations_id'), table_name='integrations')
    op.drop_table('integrations')

    op.drop_index(op.f('ix_sites_external_site_id'), table_name='sites')
    op.drop_index(op.f('ix_sites_user_id'), table_name='sites')
    op.drop_index(op.f('ix_sites_id'), table_name='sites')
    op.drop_table('sites')
