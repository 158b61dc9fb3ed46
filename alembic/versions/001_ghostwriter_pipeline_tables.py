"""Create connected account, network, curated topic and suggestion tables

Revision ID: 001_ghostwriter_pipeline_tables
Revises:
Create Date: 2026-03-01 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_ghostwriter_pipeline_tables'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        'connected_accounts',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('account_id', sa.String, nullable=False),
        sa.Column('platform', sa.String, nullable=False),

        # External identity
        sa.Column('platform_user_id', sa.String),
        sa.Column('username', sa.String),
        sa.Column('display_name', sa.String),
        sa.Column('access_token', sa.Text),

        sa.Column('sync_status', sa.String, nullable=False, server_default='pending'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True)),
        sa.Column('last_analyzed_at', sa.DateTime(timezone=True)),

        # Generation inputs
        sa.Column('voice', sa.Text),
        sa.Column('topics_of_interest', sa.Text),
        sa.Column('generation_hour_utc', sa.Integer),

        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('account_id', 'platform', 'platform_user_id', name='uq_connected_account_identity'),
    )
    op.create_index('ix_connected_accounts_id', 'connected_accounts', ['id'])
    op.create_index('ix_connected_accounts_account_id', 'connected_accounts', ['account_id'])
    op.create_index('ix_connected_accounts_platform', 'connected_accounts', ['platform'])
    op.create_index('ix_connected_accounts_platform_user_id', 'connected_accounts', ['platform_user_id'])
    op.create_index('ix_connected_accounts_sync_status', 'connected_accounts', ['sync_status'])
    op.create_index('ix_connected_accounts_is_active', 'connected_accounts', ['is_active'])

    op.create_table(
        'connected_account_sync_metadata',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('connected_account_id', sa.Integer, sa.ForeignKey('connected_accounts.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('schema_version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('sync_started_at', sa.DateTime(timezone=True)),
        sa.Column('last_sync_completed_at', sa.DateTime(timezone=True)),
        sa.Column('last_error', sa.Text),
        sa.Column('error_at', sa.DateTime(timezone=True)),
        sa.Column('reschedule_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_rescheduled_at', sa.DateTime(timezone=True)),
        sa.Column('posts_synced_last_run', sa.Integer, server_default='0'),
        sa.Column('posts_failed_last_run', sa.Integer, server_default='0'),
        sa.Column('suggestion_high_water_mark', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_connected_account_sync_metadata_id', 'connected_account_sync_metadata', ['id'])

    op.create_table(
        'network_profiles',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('connected_account_id', sa.Integer, sa.ForeignKey('connected_accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('platform', sa.String, nullable=False),
        sa.Column('platform_user_id', sa.String, nullable=False),
        sa.Column('username', sa.String, nullable=False),
        sa.Column('display_name', sa.String),
        sa.Column('engagement_score', sa.Float, server_default='0'),
        sa.Column('relevance_score', sa.Float, server_default='0'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.UniqueConstraint('connected_account_id', 'platform_user_id', name='uq_network_profile_account_user'),
    )
    op.create_index('ix_network_profiles_id', 'network_profiles', ['id'])
    op.create_index('ix_network_profiles_connected_account_id', 'network_profiles', ['connected_account_id'])

    op.create_table(
        'curated_topics',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('slug', sa.String, nullable=False, unique=True),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('topic_type', sa.String, nullable=False, server_default='realtime'),
        sa.Column('external_list_id', sa.String),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('last_synced_at', sa.DateTime(timezone=True)),
        sa.Column('last_digested_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_curated_topics_id', 'curated_topics', ['id'])

    op.create_table(
        'network_posts',
        sa.Column('id', sa.Integer, primary_key=True),

        # Exactly one owner
        sa.Column('connected_account_id', sa.Integer, sa.ForeignKey('connected_accounts.id', ondelete='CASCADE')),
        sa.Column('curated_topic_id', sa.Integer, sa.ForeignKey('curated_topics.id', ondelete='CASCADE')),
        sa.Column('network_profile_id', sa.Integer, sa.ForeignKey('network_profiles.id', ondelete='CASCADE')),

        sa.Column('platform', sa.String, nullable=False),
        sa.Column('post_id', sa.String, nullable=False),
        sa.Column('platform_user_id', sa.String),
        sa.Column('author_username', sa.String),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('posted_at', sa.DateTime(timezone=True), nullable=False),

        sa.Column('like_count', sa.Integer, server_default='0'),
        sa.Column('share_count', sa.Integer, server_default='0'),
        sa.Column('reply_count', sa.Integer, server_default='0'),
        sa.Column('quote_count', sa.Integer, server_default='0'),
        sa.Column('engagement_score', sa.Float, server_default='0'),

        sa.Column('topics', sa.JSON),
        sa.Column('sentiment', sa.String),
        *_timestamps(),
        sa.UniqueConstraint('connected_account_id', 'post_id', name='uq_network_post_account_post'),
        sa.UniqueConstraint('curated_topic_id', 'post_id', name='uq_network_post_topic_post'),
        sa.CheckConstraint(
            '(connected_account_id IS NULL) <> (curated_topic_id IS NULL)',
            name='ck_network_post_single_owner'
        ),
    )
    op.create_index('ix_network_posts_id', 'network_posts', ['id'])
    op.create_index('ix_network_posts_connected_account_id', 'network_posts', ['connected_account_id'])
    op.create_index('ix_network_posts_curated_topic_id', 'network_posts', ['curated_topic_id'])
    op.create_index('ix_network_posts_network_profile_id', 'network_posts', ['network_profile_id'])
    op.create_index('idx_network_post_account_posted', 'network_posts', ['connected_account_id', 'posted_at'])
    op.create_index('idx_network_post_account_engagement', 'network_posts', ['connected_account_id', 'engagement_score'])

    op.create_table(
        'trending_topics',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('curated_topic_id', sa.Integer, sa.ForeignKey('curated_topics.id', ondelete='CASCADE'), nullable=False),
        sa.Column('topic_name', sa.String, nullable=False),
        sa.Column('context', sa.Text),
        sa.Column('mention_count', sa.Integer, server_default='0'),
        sa.Column('total_engagement', sa.Float, server_default='0'),
        sa.Column('sample_post_ids', sa.JSON),
        sa.Column('detected_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_trending_topics_id', 'trending_topics', ['id'])
    op.create_index('ix_trending_topics_curated_topic_id', 'trending_topics', ['curated_topic_id'])
    op.create_index('ix_trending_topics_expires_at', 'trending_topics', ['expires_at'])
    op.create_index('idx_trending_topic_engagement', 'trending_topics', ['curated_topic_id', 'total_engagement'])

    op.create_table(
        'user_topic_preferences',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('connected_account_id', sa.Integer, sa.ForeignKey('connected_accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('curated_topic_id', sa.Integer, sa.ForeignKey('curated_topics.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('connected_account_id', 'curated_topic_id', name='uq_topic_preference'),
    )
    op.create_index('ix_user_topic_preferences_id', 'user_topic_preferences', ['id'])
    op.create_index('ix_user_topic_preferences_connected_account_id', 'user_topic_preferences', ['connected_account_id'])

    op.create_table(
        'writing_styles',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('connected_account_id', sa.Integer, sa.ForeignKey('connected_accounts.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('tone', sa.String),
        sa.Column('avg_length', sa.Integer),
        sa.Column('emoji_frequency', sa.Float),
        sa.Column('hashtag_frequency', sa.Float),
        sa.Column('question_frequency', sa.Float),
        sa.Column('common_phrases', sa.JSON),
        sa.Column('common_topics', sa.JSON),
        sa.Column('posting_hours', sa.JSON),
        sa.Column('style_summary', sa.Text),
        sa.Column('characteristics', sa.JSON),
        sa.Column('sample_size', sa.Integer, server_default='0'),
        sa.Column('confidence_score', sa.Float),
        sa.Column('analyzed_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_writing_styles_id', 'writing_styles', ['id'])

    op.create_table(
        'sample_posts',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('connected_account_id', sa.Integer, sa.ForeignKey('connected_accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('notes', sa.Text),
        sa.Column('sort_order', sa.Integer, server_default='0'),
        sa.Column('auto_generated', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('source_post_id', sa.String),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_sample_posts_id', 'sample_posts', ['id'])
    op.create_index('ix_sample_posts_connected_account_id', 'sample_posts', ['connected_account_id'])

    op.create_table(
        'rules',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('connected_account_id', sa.Integer, sa.ForeignKey('connected_accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rule_type', sa.String, nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('priority', sa.Integer, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_rules_id', 'rules', ['id'])
    op.create_index('ix_rules_connected_account_id', 'rules', ['connected_account_id'])

    op.create_table(
        'user_post_history',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('connected_account_id', sa.Integer, sa.ForeignKey('connected_accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('post_id', sa.String, nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('posted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('like_count', sa.Integer, server_default='0'),
        sa.Column('share_count', sa.Integer, server_default='0'),
        sa.Column('reply_count', sa.Integer, server_default='0'),
        sa.Column('engagement_score', sa.Float, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('connected_account_id', 'post_id', name='uq_user_post_history_post'),
    )
    op.create_index('ix_user_post_history_id', 'user_post_history', ['id'])
    op.create_index('ix_user_post_history_connected_account_id', 'user_post_history', ['connected_account_id'])

    op.create_table(
        'post_suggestions',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('account_id', sa.String, nullable=False),
        sa.Column('connected_account_id', sa.Integer, sa.ForeignKey('connected_accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('suggestion_type', sa.String, nullable=False, server_default='original_post'),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('reasoning', sa.Text),
        sa.Column('topics', sa.JSON),
        sa.Column('angle', sa.String),
        sa.Column('length', sa.String),
        sa.Column('character_count', sa.Integer),
        sa.Column('source_post_id', sa.Integer, sa.ForeignKey('network_posts.id', ondelete='SET NULL')),
        sa.Column('generation_type', sa.String, nullable=False),
        sa.Column('inspired_by_post_ids', sa.JSON),

        # Lifecycle
        sa.Column('status', sa.String, nullable=False, server_default='pending'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True)),
        sa.Column('dismissed_at', sa.DateTime(timezone=True)),
        sa.Column('expired_at', sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index('ix_post_suggestions_id', 'post_suggestions', ['id'])
    op.create_index('ix_post_suggestions_account_id', 'post_suggestions', ['account_id'])
    op.create_index('idx_post_suggestion_active', 'post_suggestions', ['connected_account_id', 'status', 'expires_at'])


def downgrade() -> None:
    for table in (
        'post_suggestions',
        'user_post_history',
        'rules',
        'sample_posts',
        'writing_styles',
        'user_topic_preferences',
        'trending_topics',
        'network_posts',
        'curated_topics',
        'network_profiles',
        'connected_account_sync_metadata',
        'connected_accounts',
    ):
        op.drop_table(table)
