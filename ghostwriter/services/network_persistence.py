"""
Idempotent Persistence Layer

Writes network data keyed by natural keys with INSERT ... ON CONFLICT DO
UPDATE. Only mutable fields are overwritten on conflict; the row id,
created_at, content, posted_at and sentiment of the first write survive.
Each item of a page is written inside its own SAVEPOINT so one bad row does
not lose the rest of the page.
"""
import math
import logging
from typing import Dict, Any, List, Optional, Sequence, Set
from datetime import datetime, timedelta
from dataclasses import dataclass, field

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from ghostwriter.db.models import NetworkProfile, NetworkPost, UserPostHistory
from ghostwriter.core.config import get_settings
from ghostwriter.core.monitoring import pipeline_metrics
from ghostwriter.services.extraction_service import calculate_engagement_score, analyze_sentiment
from ghostwriter.utils.timeutils import utc_now

logger = logging.getLogger(__name__)

PROFILE_MUTABLE_FIELDS = ("username", "display_name", "last_synced_at")
POST_MUTABLE_FIELDS = ("like_count", "share_count", "reply_count", "quote_count", "engagement_score", "topics")


def _insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Upserts are not supported on the '{dialect}' dialect")


@dataclass
class PostOwner:
    """Owner of a network post: a connected account or a curated topic, never both"""
    connected_account_id: Optional[int] = None
    curated_topic_id: Optional[int] = None

    def __post_init__(self):
        if (self.connected_account_id is None) == (self.curated_topic_id is None):
            raise ValueError("A network post needs exactly one owner")

    @property
    def key_column(self) -> str:
        return "connected_account_id" if self.connected_account_id is not None else "curated_topic_id"

    @property
    def key_value(self) -> int:
        return self.connected_account_id if self.connected_account_id is not None else self.curated_topic_id


@dataclass
class BatchWriteResult:
    """Outcome of writing one page of network posts"""
    written: int = 0
    failed: int = 0
    profile_ids: Set[int] = field(default_factory=set)
    post_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class NetworkPersistence:
    """Natural-key upserts for network profiles, network posts and post history"""

    def upsert_profile(
        self,
        db: Session,
        connected_account_id: int,
        platform: str,
        platform_user_id: str,
        username: Optional[str],
        display_name: Optional[str] = None,
        synced_at: Optional[datetime] = None,
    ) -> int:
        """Create or refresh a profile and return its id"""
        insert = _insert(db)
        stmt = insert(NetworkProfile).values(
            connected_account_id=connected_account_id,
            platform=platform,
            platform_user_id=platform_user_id,
            username=username or platform_user_id,
            display_name=display_name,
            engagement_score=0.0,
            relevance_score=0.0,
            last_synced_at=synced_at or utc_now(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["connected_account_id", "platform_user_id"],
            set_={
                **{name: getattr(stmt.excluded, name) for name in PROFILE_MUTABLE_FIELDS},
                "updated_at": func.now(),
            },
        )
        db.execute(stmt)
        return db.query(NetworkProfile.id).filter(
            NetworkProfile.connected_account_id == connected_account_id,
            NetworkProfile.platform_user_id == platform_user_id,
        ).scalar()

    def upsert_post(
        self,
        db: Session,
        owner: PostOwner,
        platform: str,
        post: Dict[str, Any],
        topics: Optional[List[str]] = None,
        network_profile_id: Optional[int] = None,
    ) -> int:
        """
        Create or refresh a network post and return its id.

        `post` is a normalized network client item. The engagement score and
        sentiment are derived here so every writer applies the same formula.
        """
        insert = _insert(db)
        engagement_score = calculate_engagement_score(
            post.get("like_count"), post.get("share_count"), post.get("reply_count")
        )
        stmt = insert(NetworkPost).values(
            connected_account_id=owner.connected_account_id,
            curated_topic_id=owner.curated_topic_id,
            network_profile_id=network_profile_id,
            platform=platform,
            post_id=str(post["post_id"]),
            platform_user_id=post.get("author_id"),
            author_username=post.get("author_username"),
            content=post.get("content") or "",
            posted_at=post.get("posted_at") or utc_now(),
            like_count=post.get("like_count") or 0,
            share_count=post.get("share_count") or 0,
            reply_count=post.get("reply_count") or 0,
            quote_count=post.get("quote_count") or 0,
            engagement_score=engagement_score,
            topics=list(topics or []),
            sentiment=analyze_sentiment(post.get("content")),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[owner.key_column, "post_id"],
            set_={
                **{name: getattr(stmt.excluded, name) for name in POST_MUTABLE_FIELDS},
                "updated_at": func.now(),
            },
        )
        db.execute(stmt)
        return db.query(NetworkPost.id).filter(
            getattr(NetworkPost, owner.key_column) == owner.key_value,
            NetworkPost.post_id == str(post["post_id"]),
        ).scalar()

    def write_timeline_page(
        self,
        db: Session,
        connected_account_id: int,
        platform: str,
        posts: Sequence[Dict[str, Any]],
        topics: Sequence[List[str]],
        synced_at: Optional[datetime] = None,
    ) -> BatchWriteResult:
        """Upsert author profiles and posts of one timeline page, in fetch order"""
        synced_at = synced_at or utc_now()
        owner = PostOwner(connected_account_id=connected_account_id)
        result = BatchWriteResult()

        for index, post in enumerate(posts):
            post_topics = topics[index] if index < len(topics) else []
            try:
                with db.begin_nested():
                    profile_id = None
                    if post.get("author_id"):
                        profile_id = self.upsert_profile(
                            db,
                            connected_account_id,
                            platform,
                            post["author_id"],
                            post.get("author_username"),
                            post.get("author_name"),
                            synced_at,
                        )
                    post_id = self.upsert_post(db, owner, platform, post, post_topics, profile_id)
                result.written += 1
                result.post_ids.append(post_id)
                if profile_id is not None:
                    result.profile_ids.add(profile_id)
            except (SQLAlchemyError, KeyError, TypeError, ValueError) as e:
                result.failed += 1
                result.errors.append(str(e))
                logger.warning(f"Failed to store post {post.get('post_id')} for account {connected_account_id}: {e}")

        pipeline_metrics.record_persisted_posts(result.written, result.failed)
        return result

    def write_curated_page(
        self,
        db: Session,
        curated_topic_id: int,
        platform: str,
        posts: Sequence[Dict[str, Any]],
        topics: Sequence[List[str]],
    ) -> BatchWriteResult:
        """Upsert posts fetched for a curated topic list"""
        owner = PostOwner(curated_topic_id=curated_topic_id)
        result = BatchWriteResult()

        for index, post in enumerate(posts):
            post_topics = topics[index] if index < len(topics) else []
            try:
                with db.begin_nested():
                    post_id = self.upsert_post(db, owner, platform, post, post_topics)
                result.written += 1
                result.post_ids.append(post_id)
            except (SQLAlchemyError, KeyError, TypeError, ValueError) as e:
                result.failed += 1
                result.errors.append(str(e))
                logger.warning(f"Failed to store curated post {post.get('post_id')} for topic {curated_topic_id}: {e}")

        pipeline_metrics.record_persisted_posts(result.written, result.failed)
        return result

    def upsert_following(
        self,
        db: Session,
        connected_account_id: int,
        platform: str,
        profiles: Sequence[Dict[str, Any]],
        synced_at: Optional[datetime] = None,
    ) -> BatchWriteResult:
        """Refresh followed profiles; posts are untouched"""
        synced_at = synced_at or utc_now()
        result = BatchWriteResult()
        for profile in profiles:
            try:
                with db.begin_nested():
                    profile_id = self.upsert_profile(
                        db,
                        connected_account_id,
                        platform,
                        profile["platform_user_id"],
                        profile.get("username"),
                        profile.get("display_name"),
                        synced_at,
                    )
                result.written += 1
                result.profile_ids.add(profile_id)
            except (SQLAlchemyError, KeyError, TypeError, ValueError) as e:
                result.failed += 1
                result.errors.append(str(e))
                logger.warning(f"Failed to store followed profile for account {connected_account_id}: {e}")
        return result

    def recompute_profile_engagement(
        self,
        db: Session,
        profile_ids: Sequence[int],
        now: Optional[datetime] = None,
        window_days: Optional[int] = None,
    ) -> Dict[int, float]:
        """
        Set each profile's engagement and relevance to the mean engagement of
        its posts over the trailing window.

        The mean uses math.fsum, so it does not depend on row order. Profiles
        without posts in the window, or with a non-finite mean, get 0.0.
        """
        window_days = window_days or get_settings().engagement_window_days
        cutoff = (now or utc_now()) - timedelta(days=window_days)
        scores: Dict[int, float] = {}

        for profile_id in profile_ids:
            rows = db.query(NetworkPost.engagement_score).filter(
                NetworkPost.network_profile_id == profile_id,
                NetworkPost.posted_at >= cutoff,
            ).all()
            values = [float(row[0]) for row in rows if row[0] is not None]
            average = math.fsum(values) / len(values) if values else 0.0
            if not math.isfinite(average):
                average = 0.0

            db.query(NetworkProfile).filter(NetworkProfile.id == profile_id).update(
                {"engagement_score": average, "relevance_score": average},
                synchronize_session=False,
            )
            scores[profile_id] = average

        return scores

    def store_post_history(self, db: Session, connected_account_id: int, posts: Sequence[Dict[str, Any]]) -> int:
        """Insert the account's own posts; rows already stored are left as they are"""
        if not posts:
            return 0
        insert = _insert(db)
        stored = 0
        for post in posts:
            stmt = insert(UserPostHistory).values(
                connected_account_id=connected_account_id,
                post_id=str(post["post_id"]),
                content=post.get("content") or "",
                posted_at=post.get("posted_at") or utc_now(),
                like_count=post.get("like_count") or 0,
                share_count=post.get("share_count") or 0,
                reply_count=post.get("reply_count") or 0,
                engagement_score=calculate_engagement_score(
                    post.get("like_count"), post.get("share_count"), post.get("reply_count")
                ),
            ).on_conflict_do_nothing(index_elements=["connected_account_id", "post_id"])
            stored += db.execute(stmt).rowcount or 0
        return stored


network_persistence = NetworkPersistence()
