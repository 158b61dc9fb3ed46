"""
Curated Topics

Shared topic lists feed every account that follows them:

- dispatch: one staggered sync job per active list-backed topic
- sync: fetch the list, extract per-post topics, upsert curated posts, queue a digest
- digest: summarize recent high-engagement posts into short-lived TrendingTopic rows
"""
import math
import logging
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ghostwriter.core.config import get_settings, Settings
from ghostwriter.core.exceptions import AIResponseError
from ghostwriter.core.structured_logging import structured_logger_service, PipelineStage, LogLevel
from ghostwriter.db.models import CuratedTopic, NetworkPost, TrendingTopic
from ghostwriter.integrations.twitter_client import TwitterClient, get_twitter_client
from ghostwriter.services.ai_service import AIService, get_ai_service
from ghostwriter.services.extraction_service import TopicExtractor
from ghostwriter.services.job_queue import JobQueue, JobType, get_job_queue
from ghostwriter.services.network_persistence import NetworkPersistence, network_persistence
from ghostwriter.services.rate_limiter import RateLimitGate, get_rate_limit_gate
from ghostwriter.utils.timeutils import utc_now, ensure_utc

logger = logging.getLogger(__name__)

LIST_TWEETS_RESOURCE = "list_tweets"
APP_RATE_LIMIT_SUBJECT = "app"
SYNCABLE_TOPIC_TYPES = ("realtime", "hybrid")

LIST_PAGE_SIZE = 100
MIN_POSTS_FOR_DIGEST = 10
DIGEST_POST_LIMIT = 100
DIGEST_DEFAULT_LOOKBACK = timedelta(days=7)
DIGEST_EXCERPT_LENGTH = 200

DIGEST_SYSTEM_PROMPT = "You analyze social media posts to identify trending topics and themes. Return only valid JSON."


def topic_sync_dedupe_key(curated_topic_id: int) -> str:
    return f"sync-topic-{curated_topic_id}"


def topic_digest_dedupe_key(curated_topic_id: int) -> str:
    return f"digest-topic-{curated_topic_id}"


@dataclass
class TopicJobResult:
    success: bool
    curated_topic_id: Optional[int] = None
    skipped: bool = False
    rescheduled: bool = False
    posts_synced: int = 0
    posts_failed: int = 0
    posts_analyzed: int = 0
    trending_topics_stored: int = 0
    expired_removed: int = 0
    dispatched: List[int] = field(default_factory=list)
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "curated_topic_id": self.curated_topic_id,
            "skipped": self.skipped,
            "rescheduled": self.rescheduled,
            "posts_synced": self.posts_synced,
            "posts_failed": self.posts_failed,
            "posts_analyzed": self.posts_analyzed,
            "trending_topics_stored": self.trending_topics_stored,
            "expired_removed": self.expired_removed,
            "dispatched": list(self.dispatched),
            "message": self.message,
        }


class CuratedTopicService:
    """Syncs and digests curated topic lists"""

    def __init__(
        self,
        twitter_client: Optional[TwitterClient] = None,
        ai_service: Optional[AIService] = None,
        topic_extractor: Optional[TopicExtractor] = None,
        rate_limit_gate: Optional[RateLimitGate] = None,
        job_queue: Optional[JobQueue] = None,
        persistence: Optional[NetworkPersistence] = None,
        settings: Optional[Settings] = None,
    ):
        self._twitter_client = twitter_client
        self._ai_service = ai_service
        self.topic_extractor = topic_extractor or TopicExtractor(ai_service)
        self._rate_limit_gate = rate_limit_gate
        self._job_queue = job_queue
        self.persistence = persistence or network_persistence
        self.settings = settings or get_settings()

    @property
    def twitter_client(self) -> TwitterClient:
        return self._twitter_client or get_twitter_client()

    @property
    def ai_service(self) -> AIService:
        return self._ai_service or get_ai_service()

    @property
    def rate_limit_gate(self) -> RateLimitGate:
        return self._rate_limit_gate or get_rate_limit_gate()

    @property
    def job_queue(self) -> JobQueue:
        return self._job_queue or get_job_queue()

    def topics_ready_for_sync(self, db: Session) -> List[CuratedTopic]:
        return db.query(CuratedTopic).filter(
            CuratedTopic.is_active.is_(True),
            CuratedTopic.external_list_id.isnot(None),
            CuratedTopic.topic_type.in_(SYNCABLE_TOPIC_TYPES),
        ).order_by(CuratedTopic.id).all()

    def dispatch_curated_topics(self, db: Session) -> TopicJobResult:
        """Queue one sync per ready topic, `stagger` seconds apart"""
        stagger = self.settings.curated_topic_dispatch_stagger_seconds
        result = TopicJobResult(success=True)

        for index, topic in enumerate(self.topics_ready_for_sync(db)):
            self.job_queue.enqueue(
                JobType.SYNC_CURATED_TOPIC,
                {"curated_topic_id": topic.id},
                delay=index * stagger,
                dedupe_key=topic_sync_dedupe_key(topic.id),
            )
            result.dispatched.append(topic.id)

        if result.dispatched:
            total_minutes = math.ceil(len(result.dispatched) * stagger / 60)
            result.message = f"Dispatched {len(result.dispatched)} topic syncs over ~{total_minutes} minutes"
        else:
            result.message = "No topics ready for sync"
        logger.info(result.message)
        return result

    def sync_curated_topic(self, db: Session, curated_topic_id: int) -> TopicJobResult:
        topic = db.query(CuratedTopic).filter(CuratedTopic.id == curated_topic_id).first()
        if topic is None:
            raise ValueError(f"Curated topic {curated_topic_id} not found")
        if not topic.external_list_id:
            return TopicJobResult(False, topic.id, skipped=True, message="Topic has no external list")

        decision = self.rate_limit_gate.check_rate_limit(LIST_TWEETS_RESOURCE, APP_RATE_LIMIT_SUBJECT)
        if not decision.allowed:
            delay = max(decision.retry_after_seconds, 1)
            self.job_queue.enqueue(
                JobType.SYNC_CURATED_TOPIC,
                {"curated_topic_id": topic.id},
                delay=delay,
                dedupe_key=topic_sync_dedupe_key(topic.id),
            )
            return TopicJobResult(True, topic.id, rescheduled=True, message=f"Rate limited, retrying in {delay}s")

        posts = self.twitter_client.get_list_tweets(topic.external_list_id, max_results=LIST_PAGE_SIZE)
        result = TopicJobResult(True, topic.id)

        if posts:
            topics = self.topic_extractor.extract_topics_in_batches(posts)
            written = self.persistence.write_curated_page(db, topic.id, "twitter", posts, topics)
            result.posts_synced = written.written
            result.posts_failed = written.failed

        topic.last_synced_at = utc_now()
        db.commit()

        if posts:
            self.job_queue.enqueue(
                JobType.DIGEST_CURATED_TOPIC,
                {"curated_topic_id": topic.id},
                dedupe_key=topic_digest_dedupe_key(topic.id),
            )

        structured_logger_service.log_stage(
            PipelineStage.CURATED_TOPICS,
            action="topic_synced",
            message=f"Synced {result.posts_synced} posts for curated topic {topic.slug}",
            platform="twitter",
            metadata={"curated_topic_id": topic.id, "failed": result.posts_failed},
        )
        return result

    def _digest_prompt(self, topic_name: str, posts: List[NetworkPost]) -> str:
        lines = []
        for index, post in enumerate(posts):
            excerpt = post.content[:DIGEST_EXCERPT_LENGTH] + ("..." if len(post.content) > DIGEST_EXCERPT_LENGTH else "")
            lines.append(f"[{index}] \"{excerpt}\" ({post.engagement_score or 0:g} engagement)")
        joined = "\n\n".join(lines)
        return (
            f"Analyze these recent posts from the \"{topic_name}\" category and identify 5-10 trending topics or themes.\n\n"
            "For each trending topic:\n"
            "1. Identify the specific topic/theme/event being discussed\n"
            "2. Provide brief context (1-2 sentences) explaining what's happening\n"
            "3. List which post indices (0-based) discuss this topic\n\n"
            f"Posts:\n{joined}\n\n"
            "Return ONLY a JSON object with this structure:\n"
            "{\n"
            "  \"trending_topics\": [\n"
            "    {\n"
            "      \"topic\": \"Specific topic name\",\n"
            "      \"context\": \"Brief 1-2 sentence explanation of what's happening\",\n"
            "      \"post_indices\": [0, 3, 5]\n"
            "    }\n"
            "  ]\n"
            "}\n\n"
            "Focus on specific projects, events, or developments rather than generic themes, "
            "and limit to the 5-10 most significant topics."
        )

    def _extract_trending(self, topic_name: str, posts: List[NetworkPost]) -> List[Dict[str, Any]]:
        try:
            raw = self.ai_service.complete_json(
                DIGEST_SYSTEM_PROMPT,
                self._digest_prompt(topic_name, posts),
                temperature=0.5,
                max_tokens=1500,
                operation="digest_topics",
            )
        except AIResponseError as e:
            structured_logger_service.log_stage(
                PipelineStage.CURATED_TOPICS,
                action="digest_malformed",
                message=f"Trending topic extraction returned unusable output: {e}",
                level=LogLevel.WARNING,
            )
            return []
        items = raw.get("trending_topics")
        return [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []

    def digest_curated_topic(self, db: Session, curated_topic_id: int, now: Optional[datetime] = None) -> TopicJobResult:
        now = now or utc_now()
        topic = db.query(CuratedTopic).filter(CuratedTopic.id == curated_topic_id).first()
        if topic is None:
            raise ValueError(f"Curated topic {curated_topic_id} not found")

        since = ensure_utc(topic.last_digested_at) or now - DIGEST_DEFAULT_LOOKBACK
        posts = db.query(NetworkPost).filter(
            NetworkPost.curated_topic_id == topic.id,
            NetworkPost.posted_at > since,
        ).order_by(NetworkPost.engagement_score.desc(), NetworkPost.posted_at.desc()).limit(DIGEST_POST_LIMIT).all()

        if len(posts) < MIN_POSTS_FOR_DIGEST:
            logger.info(f"Skipping digest for {topic.slug}: {len(posts)} posts, need {MIN_POSTS_FOR_DIGEST}")
            return TopicJobResult(True, topic.id, skipped=True, posts_analyzed=len(posts), message="Not enough posts")

        result = TopicJobResult(True, topic.id, posts_analyzed=len(posts))
        expires_at = now + timedelta(hours=self.settings.trending_topic_ttl_hours)

        for item in self._extract_trending(topic.name, posts):
            name = item.get("topic")
            if not isinstance(name, str) or not name.strip():
                continue
            sample_ids: List[int] = []
            engagement: List[float] = []
            indices = item.get("post_indices") if isinstance(item.get("post_indices"), list) else []
            for index in indices:
                if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(posts):
                    sample_ids.append(posts[index].id)
                    engagement.append(float(posts[index].engagement_score or 0.0))
            context = item.get("context") if isinstance(item.get("context"), str) else None
            db.add(TrendingTopic(
                curated_topic_id=topic.id,
                topic_name=name.strip(),
                context=context,
                mention_count=len(sample_ids),
                total_engagement=math.fsum(engagement),
                sample_post_ids=sample_ids,
                detected_at=now,
                expires_at=expires_at,
            ))
            result.trending_topics_stored += 1

        topic.last_digested_at = now
        result.expired_removed = self.cleanup_expired(db, now)
        db.commit()

        structured_logger_service.log_stage(
            PipelineStage.CURATED_TOPICS,
            action="topic_digested",
            message=f"Stored {result.trending_topics_stored} trending topics for {topic.slug}",
            metadata={"curated_topic_id": topic.id, "posts_analyzed": len(posts), "expires_at": expires_at.isoformat()},
        )
        return result

    @staticmethod
    def cleanup_expired(db: Session, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        return db.query(TrendingTopic).filter(TrendingTopic.expires_at <= now).delete(synchronize_session=False)


_curated_topic_service: Optional[CuratedTopicService] = None


def get_curated_topic_service() -> CuratedTopicService:
    global _curated_topic_service
    if _curated_topic_service is None:
        _curated_topic_service = CuratedTopicService()
    return _curated_topic_service


def set_curated_topic_service(service: Optional[CuratedTopicService]):
    global _curated_topic_service
    _curated_topic_service = service
