from sqlalchemy import (
    Column, Integer, String, DateTime, Float, Boolean, Text, JSON, ForeignKey,
    Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ghostwriter.db.database import Base


class SyncStatus:
    PENDING = "pending"
    SYNCING = "syncing"
    READY = "ready"
    ERROR = "error"

    ALL = (PENDING, SYNCING, READY, ERROR)


class SuggestionStatus:
    PENDING = "pending"
    USED = "used"
    DISMISSED = "dismissed"
    EXPIRED = "expired"


class ConnectedAccount(Base):
    """A tenant's link to an external social network identity"""
    __tablename__ = "connected_accounts"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String, nullable=False, index=True)  # Tenant account, opaque to this pipeline
    platform = Column(String, nullable=False, index=True)  # twitter, linkedin, threads, facebook, ghost

    # External identity (absent for self-authoring platforms)
    platform_user_id = Column(String, index=True)
    username = Column(String)
    display_name = Column(String)

    # Encrypted at rest, decrypted by ghostwriter.core.credentials
    access_token = Column(Text)

    sync_status = Column(String, nullable=False, default=SyncStatus.PENDING, index=True)
    last_synced_at = Column(DateTime(timezone=True))
    last_analyzed_at = Column(DateTime(timezone=True))

    # Content generation inputs
    voice = Column(Text)
    topics_of_interest = Column(Text)  # Comma separated, may be inferred from sample posts
    generation_hour_utc = Column(Integer)  # Hour for automated suggestion runs

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    sync_metadata = relationship("SyncMetadata", back_populates="connected_account", uselist=False, cascade="all, delete-orphan")
    network_profiles = relationship("NetworkProfile", back_populates="connected_account", cascade="all, delete-orphan")
    network_posts = relationship("NetworkPost", back_populates="connected_account", cascade="all, delete-orphan")
    suggestions = relationship("PostSuggestion", back_populates="connected_account", cascade="all, delete-orphan")
    writing_style = relationship("WritingStyle", back_populates="connected_account", uselist=False, cascade="all, delete-orphan")
    sample_posts = relationship("SamplePost", back_populates="connected_account", cascade="all, delete-orphan", order_by="SamplePost.sort_order")
    rules = relationship("Rule", back_populates="connected_account", cascade="all, delete-orphan")
    topic_preferences = relationship("UserTopicPreference", back_populates="connected_account", cascade="all, delete-orphan")
    post_history = relationship("UserPostHistory", back_populates="connected_account", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('account_id', 'platform', 'platform_user_id', name='uq_connected_account_identity'),
    )

    def __repr__(self):
        return f"<ConnectedAccount(id={self.id}, platform='{self.platform}', status='{self.sync_status}')>"


class SyncMetadata(Base):
    """Typed, versioned bookkeeping for a connected account's sync and generation runs"""
    __tablename__ = "connected_account_sync_metadata"

    CURRENT_SCHEMA_VERSION = 1

    id = Column(Integer, primary_key=True, index=True)
    connected_account_id = Column(Integer, ForeignKey("connected_accounts.id", ondelete="CASCADE"), nullable=False, unique=True)
    schema_version = Column(Integer, nullable=False, default=CURRENT_SCHEMA_VERSION)

    sync_started_at = Column(DateTime(timezone=True))
    last_sync_completed_at = Column(DateTime(timezone=True))
    last_error = Column(Text)
    error_at = Column(DateTime(timezone=True))

    # Consecutive rate-limit reschedules since the last successful sync
    reschedule_count = Column(Integer, nullable=False, default=0)
    last_rescheduled_at = Column(DateTime(timezone=True))

    posts_synced_last_run = Column(Integer, default=0)
    posts_failed_last_run = Column(Integer, default=0)

    # Newest network post already handed to the suggestion generator
    suggestion_high_water_mark = Column(DateTime(timezone=True))

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    connected_account = relationship("ConnectedAccount", back_populates="sync_metadata")


class NetworkProfile(Base):
    """A profile seen in a connected account's network"""
    __tablename__ = "network_profiles"

    id = Column(Integer, primary_key=True, index=True)
    connected_account_id = Column(Integer, ForeignKey("connected_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    platform = Column(String, nullable=False)
    platform_user_id = Column(String, nullable=False)
    username = Column(String, nullable=False)
    display_name = Column(String)

    engagement_score = Column(Float, default=0.0)
    relevance_score = Column(Float, default=0.0)

    last_synced_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    connected_account = relationship("ConnectedAccount", back_populates="network_profiles")
    posts = relationship("NetworkPost", back_populates="network_profile")

    __table_args__ = (
        UniqueConstraint('connected_account_id', 'platform_user_id', name='uq_network_profile_account_user'),
    )


class NetworkPost(Base):
    """A post from a connected account's network or from a curated topic list"""
    __tablename__ = "network_posts"

    id = Column(Integer, primary_key=True, index=True)

    # Exactly one owner
    connected_account_id = Column(Integer, ForeignKey("connected_accounts.id", ondelete="CASCADE"), index=True)
    curated_topic_id = Column(Integer, ForeignKey("curated_topics.id", ondelete="CASCADE"), index=True)
    network_profile_id = Column(Integer, ForeignKey("network_profiles.id", ondelete="CASCADE"), index=True)

    platform = Column(String, nullable=False)
    post_id = Column(String, nullable=False)  # External post id
    platform_user_id = Column(String)  # Author's external id
    author_username = Column(String)
    content = Column(Text, nullable=False)
    posted_at = Column(DateTime(timezone=True), nullable=False)

    like_count = Column(Integer, default=0)
    share_count = Column(Integer, default=0)
    reply_count = Column(Integer, default=0)
    quote_count = Column(Integer, default=0)
    engagement_score = Column(Float, default=0.0)

    topics = Column(JSON, default=list)
    sentiment = Column(String)  # positive, negative, neutral

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    connected_account = relationship("ConnectedAccount", back_populates="network_posts")
    curated_topic = relationship("CuratedTopic", back_populates="posts")
    network_profile = relationship("NetworkProfile", back_populates="posts")

    __table_args__ = (
        UniqueConstraint('connected_account_id', 'post_id', name='uq_network_post_account_post'),
        UniqueConstraint('curated_topic_id', 'post_id', name='uq_network_post_topic_post'),
        CheckConstraint(
            '(connected_account_id IS NULL) <> (curated_topic_id IS NULL)',
            name='ck_network_post_single_owner'
        ),
        Index('idx_network_post_account_posted', 'connected_account_id', 'posted_at'),
        Index('idx_network_post_account_engagement', 'connected_account_id', 'engagement_score'),
    )


class CuratedTopic(Base):
    """A shared, editorially maintained topic backed by an external list"""
    __tablename__ = "curated_topics"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text)
    topic_type = Column(String, nullable=False, default="realtime")  # realtime, evergreen, hybrid
    external_list_id = Column(String)

    is_active = Column(Boolean, default=True, nullable=False)
    last_synced_at = Column(DateTime(timezone=True))
    last_digested_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    posts = relationship("NetworkPost", back_populates="curated_topic")
    trending_topics = relationship("TrendingTopic", back_populates="curated_topic", cascade="all, delete-orphan")


class TrendingTopic(Base):
    """Derived, short-lived digest of what a curated topic's posts are talking about"""
    __tablename__ = "trending_topics"

    id = Column(Integer, primary_key=True, index=True)
    curated_topic_id = Column(Integer, ForeignKey("curated_topics.id", ondelete="CASCADE"), nullable=False, index=True)
    topic_name = Column(String, nullable=False)
    context = Column(Text)
    mention_count = Column(Integer, default=0)
    total_engagement = Column(Float, default=0.0)
    sample_post_ids = Column(JSON, default=list)  # NetworkPost ids

    detected_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    curated_topic = relationship("CuratedTopic", back_populates="trending_topics")

    __table_args__ = (
        Index('idx_trending_topic_engagement', 'curated_topic_id', 'total_engagement'),
    )


class UserTopicPreference(Base):
    __tablename__ = "user_topic_preferences"

    id = Column(Integer, primary_key=True, index=True)
    connected_account_id = Column(Integer, ForeignKey("connected_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    curated_topic_id = Column(Integer, ForeignKey("curated_topics.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    connected_account = relationship("ConnectedAccount", back_populates="topic_preferences")
    curated_topic = relationship("CuratedTopic")

    __table_args__ = (
        UniqueConstraint('connected_account_id', 'curated_topic_id', name='uq_topic_preference'),
    )


class WritingStyle(Base):
    """Statistical and AI-derived description of how an account writes, rebuilt on every analysis"""
    __tablename__ = "writing_styles"

    id = Column(Integer, primary_key=True, index=True)
    connected_account_id = Column(Integer, ForeignKey("connected_accounts.id", ondelete="CASCADE"), nullable=False, unique=True)

    tone = Column(String)
    avg_length = Column(Integer)
    emoji_frequency = Column(Float)
    hashtag_frequency = Column(Float)
    question_frequency = Column(Float)
    common_phrases = Column(JSON, default=list)
    common_topics = Column(JSON, default=list)
    posting_hours = Column(JSON, default=list)
    style_summary = Column(Text)
    characteristics = Column(JSON, default=dict)

    sample_size = Column(Integer, default=0)
    confidence_score = Column(Float)
    analyzed_at = Column(DateTime(timezone=True))

    connected_account = relationship("ConnectedAccount", back_populates="writing_style")


class SamplePost(Base):
    """Literal example of the account's voice, written by the user or picked from its best posts"""
    __tablename__ = "sample_posts"

    id = Column(Integer, primary_key=True, index=True)
    connected_account_id = Column(Integer, ForeignKey("connected_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    notes = Column(Text)
    sort_order = Column(Integer, default=0)
    auto_generated = Column(Boolean, default=False, nullable=False)
    source_post_id = Column(String)  # External id when auto-picked from post history
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    connected_account = relationship("ConnectedAccount", back_populates="sample_posts")


class Rule(Base):
    __tablename__ = "rules"

    id = Column(Integer, primary_key=True, index=True)
    connected_account_id = Column(Integer, ForeignKey("connected_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    rule_type = Column(String, nullable=False)  # never, always, prefer, tone
    content = Column(Text, nullable=False)
    priority = Column(Integer, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    connected_account = relationship("ConnectedAccount", back_populates="rules")


class UserPostHistory(Base):
    """Posts authored by the connected account itself, used for style analysis"""
    __tablename__ = "user_post_history"

    id = Column(Integer, primary_key=True, index=True)
    connected_account_id = Column(Integer, ForeignKey("connected_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    post_id = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    posted_at = Column(DateTime(timezone=True), nullable=False)
    like_count = Column(Integer, default=0)
    share_count = Column(Integer, default=0)
    reply_count = Column(Integer, default=0)
    engagement_score = Column(Float, default=0.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    connected_account = relationship("ConnectedAccount", back_populates="post_history")

    __table_args__ = (
        UniqueConstraint('connected_account_id', 'post_id', name='uq_user_post_history_post'),
    )


class PostSuggestion(Base):
    """A generated, perishable content suggestion"""
    __tablename__ = "post_suggestions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String, nullable=False, index=True)
    connected_account_id = Column(Integer, ForeignKey("connected_accounts.id", ondelete="CASCADE"), nullable=False)

    suggestion_type = Column(String, nullable=False, default="original_post")  # original_post, reply
    content = Column(Text, nullable=False)
    reasoning = Column(Text)
    topics = Column(JSON, default=list)
    angle = Column(String)  # hot_take, roast, hype, story, teach, question
    length = Column(String)  # short, medium, long
    character_count = Column(Integer)

    source_post_id = Column(Integer, ForeignKey("network_posts.id", ondelete="SET NULL"))
    generation_type = Column(String, nullable=False)  # network_based, interest_based
    inspired_by_post_ids = Column(JSON, default=list)  # NetworkPost ids

    status = Column(String, nullable=False, default=SuggestionStatus.PENDING)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True))
    dismissed_at = Column(DateTime(timezone=True))
    expired_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    connected_account = relationship("ConnectedAccount", back_populates="suggestions")
    source_post = relationship("NetworkPost")

    __table_args__ = (
        Index('idx_post_suggestion_active', 'connected_account_id', 'status', 'expires_at'),
    )
