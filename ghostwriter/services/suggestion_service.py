"""
Suggestion Strategy Selector

Chooses one of two closed generation strategies from the account's platform
class and runs a generation batch:

- NetworkBasedStrategy (network platforms): the newest unreviewed network
  posts ranked by engagement, topics computed from them, plus trending topics
  and sample posts from subscribed curated topics. A high-water mark on the
  account's sync metadata keeps repeated runs incremental.
- InterestBasedStrategy (self-authoring platforms): explicit topics of
  interest, else topics inferred once from sample posts and written back to
  the account, else curated topics. No source at all is a "need more input"
  result, not an error.

Each batch first expires stale suggestions, then makes a single AI call with a
strict JSON contract. Every suggestion is saved in its own SAVEPOINT.
"""
import math
import random
import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, Tuple
from datetime import datetime, timedelta
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ghostwriter.core.config import get_settings, Settings
from ghostwriter.core.exceptions import AIResponseError
from ghostwriter.core.monitoring import pipeline_metrics
from ghostwriter.core.structured_logging import structured_logger_service, PipelineStage, LogLevel
from ghostwriter.db.models import (
    ConnectedAccount, NetworkPost, Rule, TrendingTopic, UserTopicPreference, WritingStyle
)
from ghostwriter.integrations.platforms import PlatformClass, get_platform_class
from ghostwriter.services.ai_service import AIService, get_ai_service
from ghostwriter.services.extraction_service import clean_topics
from ghostwriter.services.network_sync_service import get_sync_metadata
from ghostwriter.services.prompt_builder import (
    PromptBuilder, prompt_builder as default_prompt_builder, PromptPost, RuleSpec, SampleExample,
    SuggestionSlot, TopicSignal, ANGLES, LENGTHS
)
from ghostwriter.services.suggestion_lifecycle import SuggestionLifecycleManager, suggestion_lifecycle
from ghostwriter.utils.timeutils import utc_now, ensure_utc

logger = logging.getLogger(__name__)

TOP_POSTS_LIMIT = 20
TOP_TRENDING_TOPICS_LIMIT = 20
NETWORK_TOPICS_LIMIT = 10
MAX_SUGGESTIONS_PER_BATCH = 10
MAX_INFERRED_TOPICS_LENGTH = 200

NEED_MORE_INPUT_MESSAGE = (
    "Please select curated topics, add topics of interest, or add sample posts to generate suggestions."
)
TOPIC_INFERENCE_SYSTEM_PROMPT = "You are an expert at identifying topics and themes from social media content."


class GenerationType:
    NETWORK_BASED = "network_based"
    INTEREST_BASED = "interest_based"


class SuggestionType:
    ORIGINAL_POST = "original_post"
    REPLY = "reply"


@dataclass
class GenerationContext:
    """Everything a strategy collected for one batch"""
    account: ConnectedAccount
    topics_of_interest: Optional[str] = None
    topics: List[TopicSignal] = field(default_factory=list)
    posts: List[PromptPost] = field(default_factory=list)
    samples: List[SampleExample] = field(default_factory=list)
    rules: List[RuleSpec] = field(default_factory=list)
    writing_style: Optional[WritingStyle] = None
    curated_topic_ids: List[int] = field(default_factory=list)
    newest_post_at: Optional[datetime] = None


@dataclass
class ParsedSuggestion:
    content: str
    reasoning: Optional[str]
    angle: str
    length: str
    topics: List[str]
    suggestion_type: str = SuggestionType.ORIGINAL_POST
    source_external_post_id: Optional[str] = None
    inspired_by_indices: List[int] = field(default_factory=list)


@dataclass
class GenerationResult:
    """Result of one generation batch"""
    success: bool
    connected_account_id: int
    generation_type: Optional[str] = None
    suggestions_generated: int = 0
    suggestions_failed: int = 0
    suggestion_ids: List[int] = field(default_factory=list)
    expired_count: int = 0
    need_more_input: bool = False
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "connected_account_id": self.connected_account_id,
            "generation_type": self.generation_type,
            "suggestions_generated": self.suggestions_generated,
            "suggestions_failed": self.suggestions_failed,
            "suggestion_ids": list(self.suggestion_ids),
            "expired_count": self.expired_count,
            "need_more_input": self.need_more_input,
            "message": self.message,
        }


def load_samples(account: ConnectedAccount) -> List[SampleExample]:
    return [SampleExample(content=sample.content, notes=sample.notes) for sample in account.sample_posts]


def load_active_rules(db: Session, connected_account_id: int) -> List[RuleSpec]:
    rules = db.query(Rule).filter(
        Rule.connected_account_id == connected_account_id,
        Rule.is_active.is_(True),
    ).order_by(Rule.priority.desc(), Rule.id).all()
    return [RuleSpec(rule_type=rule.rule_type, content=rule.content, priority=rule.priority or 0) for rule in rules]


def get_curated_topic_ids(db: Session, connected_account_id: int) -> List[int]:
    rows = db.query(UserTopicPreference.curated_topic_id).filter(
        UserTopicPreference.connected_account_id == connected_account_id
    ).order_by(UserTopicPreference.curated_topic_id).all()
    return [row[0] for row in rows]


def get_top_trending_topics(db: Session, curated_topic_ids: List[int], now: datetime, limit: int = TOP_TRENDING_TOPICS_LIMIT) -> List[TrendingTopic]:
    """Unexpired trending topics for the given curated topics, strongest first"""
    if not curated_topic_ids:
        return []
    return db.query(TrendingTopic).filter(
        TrendingTopic.curated_topic_id.in_(curated_topic_ids),
        TrendingTopic.expires_at > now,
    ).order_by(
        TrendingTopic.total_engagement.desc(),
        TrendingTopic.detected_at.desc(),
    ).limit(limit).all()


def to_topic_signals(trending_topics: List[TrendingTopic]) -> List[TopicSignal]:
    return [
        TopicSignal(
            topic=topic.topic_name,
            mention_count=topic.mention_count or 0,
            total_engagement=float(topic.total_engagement or 0.0),
            context=topic.context,
        )
        for topic in trending_topics
    ]


def compute_network_topics(posts: List[NetworkPost], limit: int = NETWORK_TOPICS_LIMIT) -> List[TopicSignal]:
    """Aggregate post topics by mention count and summed engagement"""
    mentions: Dict[str, int] = {}
    engagement: Dict[str, List[float]] = {}
    display: Dict[str, str] = {}
    for post in posts:
        for topic in post.topics or []:
            if not isinstance(topic, str) or not topic.strip():
                continue
            key = topic.strip().lower()
            display.setdefault(key, topic.strip())
            mentions[key] = mentions.get(key, 0) + 1
            engagement.setdefault(key, []).append(float(post.engagement_score or 0.0))

    signals = [
        TopicSignal(topic=display[key], mention_count=mentions[key], total_engagement=math.fsum(engagement[key]))
        for key in mentions
    ]
    signals.sort(key=lambda s: (-s.total_engagement, -s.mention_count, s.topic.lower()))
    return signals[:limit]


def parse_suggestions(raw: Dict[str, Any], slots: List[SuggestionSlot]) -> List[ParsedSuggestion]:
    """
    Validate the model's `suggestions` array against the JSON contract.

    Raises:
        AIResponseError: the payload has no `suggestions` array
    """
    entries = raw.get("suggestions")
    if not isinstance(entries, list):
        raise AIResponseError("Response is missing the 'suggestions' array")

    parsed: List[ParsedSuggestion] = []
    for index, entry in enumerate(entries[:len(slots)]):
        if not isinstance(entry, dict):
            logger.warning(f"Skipping suggestion {index}: not an object")
            continue
        content = entry.get("content")
        if not isinstance(content, str) or not content.strip():
            logger.warning(f"Skipping suggestion {index}: empty content")
            continue

        slot = slots[index]
        angle = entry.get("angle") if entry.get("angle") in ANGLES else slot.angle
        length = entry.get("length") if entry.get("length") in LENGTHS else slot.length
        reasoning = entry.get("reasoning") if isinstance(entry.get("reasoning"), str) else None

        indices = entry.get("inspired_by_posts") or []
        if not isinstance(indices, list):
            indices = []
        inspired = [i for i in indices if isinstance(i, int) and not isinstance(i, bool)]

        source = entry.get("source_post_id")
        is_reply = entry.get("type") == SuggestionType.REPLY and source not in (None, "")

        parsed.append(ParsedSuggestion(
            content=content.strip(),
            reasoning=reasoning,
            angle=angle,
            length=length,
            topics=clean_topics(entry.get("topics")),
            suggestion_type=SuggestionType.REPLY if is_reply else SuggestionType.ORIGINAL_POST,
            source_external_post_id=str(source) if is_reply else None,
            inspired_by_indices=inspired,
        ))
    return parsed


class SuggestionStrategy(ABC):
    """One way of turning an account's evidence into a generation prompt"""

    generation_type: str = ""

    def __init__(self, ai_service: AIService, prompt_builder: PromptBuilder, settings: Settings):
        self.ai_service = ai_service
        self.prompt_builder = prompt_builder
        self.settings = settings

    @abstractmethod
    def gather_context(self, db: Session, account: ConnectedAccount, now: datetime) -> Optional[GenerationContext]:
        """Collect generation inputs; None means there is nothing to generate from"""

    @abstractmethod
    def build_prompts(self, context: GenerationContext, slots: List[SuggestionSlot]) -> Tuple[str, str]:
        """Return (system_prompt, user_prompt)"""

    def after_success(self, db: Session, context: GenerationContext):
        """Hook run once at least one suggestion was saved"""


class NetworkBasedStrategy(SuggestionStrategy):
    generation_type = GenerationType.NETWORK_BASED

    def gather_context(self, db: Session, account: ConnectedAccount, now: datetime) -> Optional[GenerationContext]:
        metadata = get_sync_metadata(db, account)
        high_water_mark = ensure_utc(metadata.suggestion_high_water_mark)

        query = db.query(NetworkPost).filter(NetworkPost.connected_account_id == account.id)
        if high_water_mark is not None:
            query = query.filter(NetworkPost.posted_at > high_water_mark)
        else:
            query = query.filter(NetworkPost.posted_at >= now - timedelta(hours=self.settings.network_lookback_hours))
        own_posts = query.order_by(
            NetworkPost.engagement_score.desc(),
            NetworkPost.posted_at.desc(),
        ).limit(TOP_POSTS_LIMIT).all()

        topics = compute_network_topics(own_posts)

        curated_ids = get_curated_topic_ids(db, account.id)
        trending = get_top_trending_topics(db, curated_ids, now)
        topics.extend(to_topic_signals(trending))

        curated_posts: List[NetworkPost] = []
        sample_ids = sorted({post_id for topic in trending for post_id in (topic.sample_post_ids or [])})
        if sample_ids:
            curated_posts = db.query(NetworkPost).filter(NetworkPost.id.in_(sample_ids)).order_by(
                NetworkPost.engagement_score.desc()
            ).limit(TOP_POSTS_LIMIT).all()

        posts: List[PromptPost] = []
        seen = set()
        for post in own_posts + curated_posts:
            if post.id in seen or len(posts) >= TOP_POSTS_LIMIT:
                continue
            seen.add(post.id)
            posts.append(PromptPost(
                network_post_id=post.id,
                external_post_id=post.post_id,
                content=post.content,
                engagement_score=float(post.engagement_score or 0.0),
                author_username=post.author_username,
            ))

        samples = load_samples(account)
        topics_of_interest = (account.topics_of_interest or "").strip() or None

        if not posts and not curated_ids and not topics_of_interest and not samples:
            return None

        newest = max((ensure_utc(post.posted_at) for post in own_posts), default=None)
        return GenerationContext(
            account=account,
            topics_of_interest=topics_of_interest,
            topics=topics,
            posts=posts,
            samples=samples,
            rules=load_active_rules(db, account.id),
            writing_style=account.writing_style,
            curated_topic_ids=curated_ids,
            newest_post_at=newest,
        )

    def build_prompts(self, context: GenerationContext, slots: List[SuggestionSlot]) -> Tuple[str, str]:
        system_prompt = self.prompt_builder.build_network_system_prompt(
            context.account.platform, context.account.voice, context.samples, context.rules, context.writing_style
        )
        user_prompt = self.prompt_builder.build_network_user_prompt(
            context.posts, context.topics, context.topics_of_interest, slots
        )
        return system_prompt, user_prompt

    def after_success(self, db: Session, context: GenerationContext):
        if context.newest_post_at is None:
            return
        metadata = get_sync_metadata(db, context.account)
        current = ensure_utc(metadata.suggestion_high_water_mark)
        if current is None or context.newest_post_at > current:
            metadata.suggestion_high_water_mark = context.newest_post_at


class InterestBasedStrategy(SuggestionStrategy):
    generation_type = GenerationType.INTEREST_BASED

    def gather_context(self, db: Session, account: ConnectedAccount, now: datetime) -> Optional[GenerationContext]:
        curated_ids = get_curated_topic_ids(db, account.id)
        trending = get_top_trending_topics(db, curated_ids, now)
        samples = load_samples(account)
        topics_of_interest = (account.topics_of_interest or "").strip() or None

        if not topics_of_interest and not curated_ids and samples:
            inferred = self.infer_topics(samples)
            if inferred:
                # Written back so later batches skip inference
                account.topics_of_interest = inferred
                db.commit()
                topics_of_interest = inferred
                logger.info(f"Inferred topics for account {account.id}: {inferred}")

        if not topics_of_interest and not curated_ids and not samples:
            return None

        return GenerationContext(
            account=account,
            topics_of_interest=topics_of_interest,
            topics=to_topic_signals(trending),
            samples=samples,
            rules=load_active_rules(db, account.id),
            curated_topic_ids=curated_ids,
        )

    def infer_topics(self, samples: List[SampleExample]) -> Optional[str]:
        """One inference call over the sample posts; None when it fails"""
        try:
            topics = self.ai_service.complete_text(
                TOPIC_INFERENCE_SYSTEM_PROMPT,
                self.prompt_builder.build_topic_inference_prompt(samples),
                temperature=0.7,
                max_tokens=100,
                operation="infer_topics",
            )
        except Exception as e:
            logger.warning(f"Failed to infer topics from sample posts: {e}")
            return None
        return topics.strip().strip('"')[:MAX_INFERRED_TOPICS_LENGTH] or None

    def build_prompts(self, context: GenerationContext, slots: List[SuggestionSlot]) -> Tuple[str, str]:
        system_prompt = self.prompt_builder.build_interest_system_prompt(
            context.account.platform, context.account.voice, context.samples, context.rules
        )
        user_prompt = self.prompt_builder.build_interest_user_prompt(
            context.topics_of_interest, context.topics, slots
        )
        return system_prompt, user_prompt


class SuggestionService:
    """Runs generation batches through the strategy chosen for each account"""

    def __init__(
        self,
        ai_service: Optional[AIService] = None,
        lifecycle: Optional[SuggestionLifecycleManager] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        rng: Optional[random.Random] = None,
        settings: Optional[Settings] = None,
    ):
        self._ai_service = ai_service
        self.lifecycle = lifecycle or suggestion_lifecycle
        self.prompt_builder = prompt_builder or default_prompt_builder
        self.rng = rng or random.Random()
        self.settings = settings or get_settings()

    @property
    def ai_service(self) -> AIService:
        return self._ai_service or get_ai_service()

    def select_strategy(self, account: ConnectedAccount) -> SuggestionStrategy:
        if get_platform_class(account.platform) == PlatformClass.SELF_AUTHORING:
            return InterestBasedStrategy(self.ai_service, self.prompt_builder, self.settings)
        return NetworkBasedStrategy(self.ai_service, self.prompt_builder, self.settings)

    def _slots(self, count: int) -> List[SuggestionSlot]:
        return [SuggestionSlot(angle=self.rng.choice(ANGLES), length=self.rng.choice(LENGTHS)) for _ in range(count)]

    def generate_suggestions(
        self,
        db: Session,
        connected_account_id: int,
        count: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> GenerationResult:
        """
        Expire stale suggestions, then generate and persist up to `count` new ones.

        Input problems (unknown account, no sources) return an unsuccessful
        result. Malformed AI output yields zero suggestions. AI transport
        errors propagate to the job runner.
        """
        now = now or utc_now()
        count = max(1, min(int(count or self.settings.default_suggestion_count), MAX_SUGGESTIONS_PER_BATCH))

        expired = self.lifecycle.expire_old(db, now=now, connected_account_id=connected_account_id)
        db.commit()

        account = db.query(ConnectedAccount).filter(ConnectedAccount.id == connected_account_id).first()
        if account is None:
            return GenerationResult(False, connected_account_id, expired_count=expired, message="Connected account not found")
        if not account.is_active:
            return GenerationResult(False, connected_account_id, expired_count=expired, message="Connected account is inactive")

        strategy = self.select_strategy(account)
        context = strategy.gather_context(db, account, now)
        if context is None:
            logger.info(f"No content sources for account {account.id}; asking for more input")
            return GenerationResult(
                False,
                account.id,
                generation_type=strategy.generation_type,
                expired_count=expired,
                need_more_input=True,
                message=NEED_MORE_INPUT_MESSAGE,
            )

        slots = self._slots(count)
        system_prompt, user_prompt = strategy.build_prompts(context, slots)

        try:
            raw = self.ai_service.complete_json(
                system_prompt,
                user_prompt,
                temperature=0.8,
                max_tokens=1500,
                operation=f"generate_{strategy.generation_type}",
            )
            parsed = parse_suggestions(raw, slots)
        except AIResponseError as e:
            logger.warning(f"Suggestion generation returned malformed output for account {account.id}: {e}")
            structured_logger_service.log_stage(
                PipelineStage.SUGGESTION,
                action="malformed_output",
                message=f"No suggestions generated for account {account.id}",
                level=LogLevel.WARNING,
                connected_account_id=account.id,
                platform=account.platform,
                metadata={"reason": str(e)},
            )
            return GenerationResult(
                False,
                account.id,
                generation_type=strategy.generation_type,
                expired_count=expired,
                message="AI returned malformed suggestions",
            )

        result = GenerationResult(True, account.id, generation_type=strategy.generation_type, expired_count=expired)
        for item in parsed:
            try:
                with db.begin_nested():
                    suggestion = self._persist(db, account, strategy, context, item, now)
                result.suggestion_ids.append(suggestion.id)
            except SQLAlchemyError as e:
                result.suggestions_failed += 1
                logger.warning(f"Failed to save suggestion for account {account.id}: {e}")

        result.suggestions_generated = len(result.suggestion_ids)
        if result.suggestions_generated:
            strategy.after_success(db, context)
        db.commit()

        pipeline_metrics.record_suggestions(strategy.generation_type, result.suggestions_generated)
        structured_logger_service.log_stage(
            PipelineStage.SUGGESTION,
            action="suggestions_generated",
            message=f"Saved {result.suggestions_generated} {strategy.generation_type} suggestions for account {account.id}",
            connected_account_id=account.id,
            platform=account.platform,
            metadata={
                "requested": count,
                "returned": len(parsed),
                "failed": result.suggestions_failed,
                "posts": len(context.posts),
                "topics": len(context.topics),
            },
        )
        return result

    def _persist(self, db: Session, account: ConnectedAccount, strategy: SuggestionStrategy,
                 context: GenerationContext, item: ParsedSuggestion, now: datetime):
        suggestion_type = item.suggestion_type
        source_post_id = None
        if suggestion_type == SuggestionType.REPLY:
            source_post_id = self._resolve_source_post(db, account, context, item.source_external_post_id)
            if source_post_id is None:
                logger.info(
                    f"Reply source {item.source_external_post_id} not found for account {account.id}; "
                    "saving as original post"
                )
                suggestion_type = SuggestionType.ORIGINAL_POST

        inspired_by = [
            context.posts[index].network_post_id
            for index in item.inspired_by_indices
            if 0 <= index < len(context.posts)
        ]

        return self.lifecycle.create_suggestion(
            db,
            now=now,
            account_id=account.account_id,
            connected_account_id=account.id,
            suggestion_type=suggestion_type,
            content=item.content,
            reasoning=item.reasoning,
            topics=item.topics,
            angle=item.angle,
            length=item.length,
            character_count=len(item.content),
            source_post_id=source_post_id,
            generation_type=strategy.generation_type,
            inspired_by_post_ids=inspired_by,
        )

    @staticmethod
    def _resolve_source_post(db: Session, account: ConnectedAccount, context: GenerationContext,
                             external_post_id: Optional[str]) -> Optional[int]:
        """Exact external-id match against the prompt posts, then the account's own network posts"""
        if not external_post_id:
            return None
        for post in context.posts:
            if post.external_post_id == external_post_id:
                return post.network_post_id
        row = db.query(NetworkPost.id).filter(
            NetworkPost.connected_account_id == account.id,
            NetworkPost.post_id == external_post_id,
        ).first()
        return row[0] if row else None


_suggestion_service: Optional[SuggestionService] = None


def get_suggestion_service() -> SuggestionService:
    global _suggestion_service
    if _suggestion_service is None:
        _suggestion_service = SuggestionService()
    return _suggestion_service


def set_suggestion_service(service: Optional[SuggestionService]):
    global _suggestion_service
    _suggestion_service = service
