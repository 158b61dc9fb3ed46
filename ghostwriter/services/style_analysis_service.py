"""
Writing Style Analysis

Rebuilds an account's WritingStyle from its own recent posts:

1. Fetch authored posts (gated on `user_tweets`; a denial reschedules the job)
2. Store them in UserPostHistory (insert-only)
3. Basic statistics plus one AI analysis of tone and themes
4. Replace the WritingStyle row wholesale
5. Replace auto-generated sample posts with the top posts by engagement
6. Describe the account's voice from those samples
"""
import re
import logging
from collections import Counter
from typing import Dict, Any, List, Optional, Sequence
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ghostwriter.core.credentials import TokenCipher, get_token_cipher
from ghostwriter.core.exceptions import AIResponseError
from ghostwriter.core.structured_logging import structured_logger_service, PipelineStage
from ghostwriter.db.models import ConnectedAccount, SamplePost, UserPostHistory, WritingStyle
from ghostwriter.integrations.platforms import SYNCABLE_PLATFORMS
from ghostwriter.integrations.twitter_client import TwitterClient, get_twitter_client
from ghostwriter.services.ai_service import AIService, get_ai_service
from ghostwriter.services.extraction_service import clean_topics
from ghostwriter.services.job_queue import JobQueue, JobType, get_job_queue
from ghostwriter.services.network_persistence import NetworkPersistence, network_persistence
from ghostwriter.services.rate_limiter import RateLimitGate, get_rate_limit_gate
from ghostwriter.utils.timeutils import utc_now, ensure_utc

logger = logging.getLogger(__name__)

MIN_POSTS_FOR_ANALYSIS = 5
MIN_SAMPLES_FOR_VOICE = 3
MAX_AUTO_SAMPLES = 5
AI_ANALYSIS_SAMPLE_SIZE = 20
USER_TWEETS_PAGE_SIZE = 100
MAX_VOICE_LENGTH = 200

EMOJI_PATTERN = re.compile("[\U0001F300-\U0001F9FF☀-⛿✀-➿]")

VOICE_SYSTEM_PROMPT = (
    "You are an expert at analyzing writing styles and creating concise voice descriptions for AI ghostwriting."
)


def calculate_confidence_score(sample_size: int) -> float:
    """Confidence grows with sample size and tops out at 100 posts"""
    if sample_size >= 100:
        return 0.95
    if sample_size >= 50:
        return 0.85
    if sample_size >= 25:
        return 0.75
    if sample_size >= 10:
        return 0.65
    return 0.50


def calculate_basic_stats(posts: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Length, emoji/hashtag/question frequency, repeated phrases and busiest hours"""
    total = len(posts)
    if not total:
        return {
            "avg_length": 0, "emoji_frequency": 0.0, "hashtag_frequency": 0.0,
            "question_frequency": 0.0, "common_phrases": [], "posting_hours": [],
        }

    total_length = emoji_posts = hashtag_posts = question_posts = 0
    phrases: Counter = Counter()
    hours: Counter = Counter()

    for post in posts:
        content = post.get("content") or ""
        total_length += len(content)
        if EMOJI_PATTERN.search(content):
            emoji_posts += 1
        if "#" in content:
            hashtag_posts += 1
        if "?" in content:
            question_posts += 1

        words = content.lower().split()
        for i in range(len(words) - 2):
            phrase = " ".join(words[i:i + 3])
            if len(phrase) > 10:
                phrases[phrase] += 1

        posted_at = ensure_utc(post.get("posted_at"))
        if posted_at is not None:
            hours[posted_at.hour] += 1

    common_phrases = [phrase for phrase, count in sorted(phrases.items(), key=lambda kv: (-kv[1], kv[0])) if count > 1][:10]
    posting_hours = [hour for hour, _ in sorted(hours.items(), key=lambda kv: (-kv[1], kv[0]))][:5]

    return {
        "avg_length": round(total_length / total),
        "emoji_frequency": round(emoji_posts / total, 2),
        "hashtag_frequency": round(hashtag_posts / total, 2),
        "question_frequency": round(question_posts / total, 2),
        "common_phrases": common_phrases,
        "posting_hours": posting_hours,
    }


@dataclass
class StyleAnalysisResult:
    success: bool
    connected_account_id: int
    posts_analyzed: int = 0
    samples_created: int = 0
    voice_generated: bool = False
    rescheduled: bool = False
    retry_after_seconds: Optional[int] = None
    confidence_score: Optional[float] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


class StyleAnalysisService:
    """Builds WritingStyle, auto sample posts and voice for a connected account"""

    def __init__(
        self,
        ai_service: Optional[AIService] = None,
        twitter_client: Optional[TwitterClient] = None,
        rate_limit_gate: Optional[RateLimitGate] = None,
        job_queue: Optional[JobQueue] = None,
        persistence: Optional[NetworkPersistence] = None,
        token_cipher: Optional[TokenCipher] = None,
    ):
        self._ai_service = ai_service
        self._twitter_client = twitter_client
        self._rate_limit_gate = rate_limit_gate
        self._job_queue = job_queue
        self.persistence = persistence or network_persistence
        self._token_cipher = token_cipher

    @property
    def ai_service(self) -> AIService:
        return self._ai_service or get_ai_service()

    @property
    def twitter_client(self) -> TwitterClient:
        return self._twitter_client or get_twitter_client()

    @property
    def rate_limit_gate(self) -> RateLimitGate:
        return self._rate_limit_gate or get_rate_limit_gate()

    @property
    def job_queue(self) -> JobQueue:
        return self._job_queue or get_job_queue()

    @property
    def token_cipher(self) -> TokenCipher:
        return self._token_cipher or get_token_cipher()

    def analyze_account(self, db: Session, connected_account_id: int) -> StyleAnalysisResult:
        account = db.query(ConnectedAccount).filter(ConnectedAccount.id == connected_account_id).first()
        if account is None:
            return StyleAnalysisResult(False, connected_account_id, message="Connected account not found")

        token = None
        if account.platform in SYNCABLE_PLATFORMS and account.platform_user_id:
            token = self.token_cipher.decrypt(account.access_token)
        if token is None:
            return StyleAnalysisResult(False, account.id, message="No usable credential for style analysis")

        decision = self.rate_limit_gate.check_rate_limit("user_tweets", account.platform_user_id)
        if not decision.allowed:
            delay = max(decision.retry_after_seconds, 1)
            self.job_queue.enqueue(
                JobType.ANALYZE_STYLE,
                {"connected_account_id": account.id},
                delay=delay,
                dedupe_key=f"analyze-style-{account.id}",
            )
            return StyleAnalysisResult(
                True, account.id, rescheduled=True, retry_after_seconds=delay,
                message=f"Rate limited, retrying in {delay}s",
            )

        posts = self.twitter_client.get_user_tweets(token, account.platform_user_id, max_results=USER_TWEETS_PAGE_SIZE)
        if len(posts) < MIN_POSTS_FOR_ANALYSIS:
            return StyleAnalysisResult(
                False, account.id, posts_analyzed=len(posts), message="Not enough posts for style analysis"
            )

        self.persistence.store_post_history(db, account.id, posts)

        stats = calculate_basic_stats(posts)
        analysis = self._ai_analysis(posts, account.platform)
        confidence = calculate_confidence_score(len(posts))
        style = self._replace_writing_style(db, account, stats, analysis, len(posts), confidence)

        top_posts = db.query(UserPostHistory).filter(
            UserPostHistory.connected_account_id == account.id
        ).order_by(UserPostHistory.engagement_score.desc(), UserPostHistory.posted_at.desc()).limit(MAX_AUTO_SAMPLES).all()
        samples_created = self._replace_auto_samples(db, account, top_posts)

        voice = None
        if samples_created >= MIN_SAMPLES_FOR_VOICE:
            voice = self._describe_voice([post.content for post in top_posts[:samples_created]], style)
        if voice:
            account.voice = voice
        account.last_analyzed_at = utc_now()
        db.commit()

        structured_logger_service.log_stage(
            PipelineStage.STYLE_ANALYSIS,
            action="style_analyzed",
            message=f"Analyzed {len(posts)} posts for account {account.id}",
            connected_account_id=account.id,
            platform=account.platform,
            metadata={"samples_created": samples_created, "voice_generated": bool(voice), "confidence": confidence},
        )
        return StyleAnalysisResult(
            True,
            account.id,
            posts_analyzed=len(posts),
            samples_created=samples_created,
            voice_generated=bool(voice),
            confidence_score=confidence,
        )

    def _ai_analysis(self, posts: Sequence[Dict[str, Any]], platform: str) -> Dict[str, Any]:
        system_prompt = (
            f"You are an expert at analyzing writing styles for {platform} posts.\n\n"
            "Analyze the provided posts and identify:\n"
            "1. Overall tone (casual, professional, humorous, thoughtful, etc.)\n"
            "2. Writing style description\n"
            "3. Common topics or themes\n"
            "4. Unique characteristics\n\n"
            "Return a JSON object with:\n"
            "{\n"
            "  \"tone\": \"brief description of tone\",\n"
            "  \"style_summary\": \"2-3 sentence description of writing style\",\n"
            "  \"common_topics\": [\"topic1\", \"topic2\", \"topic3\"],\n"
            "  \"characteristics\": [\"characteristic1\", \"characteristic2\"]\n"
            "}"
        )
        sample = posts[:AI_ANALYSIS_SAMPLE_SIZE]
        numbered = "\n\n".join(f"{i + 1}. \"{post.get('content', '')}\"" for i, post in enumerate(sample))
        user_prompt = (
            f"Analyze these {len(sample)} posts and identify the writing style:\n\n{numbered}\n\n"
            "Identify the tone, style, topics, and unique characteristics."
        )

        try:
            result = self.ai_service.complete_json(
                system_prompt, user_prompt, temperature=0.3, max_tokens=1000, operation="analyze_style"
            )
        except AIResponseError as e:
            logger.warning(f"Style analysis returned malformed output, keeping statistics only: {e}")
            return {"tone": None, "style_summary": None, "common_topics": [], "characteristics": []}

        characteristics = result.get("characteristics")
        return {
            "tone": result.get("tone") if isinstance(result.get("tone"), str) else None,
            "style_summary": result.get("style_summary") if isinstance(result.get("style_summary"), str) else None,
            "common_topics": clean_topics(result.get("common_topics")),
            "characteristics": [c for c in characteristics if isinstance(c, str)] if isinstance(characteristics, list) else [],
        }

    @staticmethod
    def _replace_writing_style(db: Session, account: ConnectedAccount, stats: Dict[str, Any],
                               analysis: Dict[str, Any], sample_size: int, confidence: float) -> WritingStyle:
        style = db.query(WritingStyle).filter(WritingStyle.connected_account_id == account.id).first()
        if style is None:
            style = WritingStyle(connected_account_id=account.id)
            db.add(style)

        style.tone = analysis["tone"]
        style.style_summary = analysis["style_summary"]
        style.common_topics = analysis["common_topics"]
        style.characteristics = {"traits": analysis["characteristics"]}
        style.avg_length = stats["avg_length"]
        style.emoji_frequency = stats["emoji_frequency"]
        style.hashtag_frequency = stats["hashtag_frequency"]
        style.question_frequency = stats["question_frequency"]
        style.common_phrases = stats["common_phrases"]
        style.posting_hours = stats["posting_hours"]
        style.sample_size = sample_size
        style.confidence_score = confidence
        style.analyzed_at = utc_now()
        db.flush()
        return style

    @staticmethod
    def _replace_auto_samples(db: Session, account: ConnectedAccount, top_posts: List[UserPostHistory]) -> int:
        """Swap auto-generated samples for the current top posts; manual samples are kept"""
        if len(top_posts) < MIN_SAMPLES_FOR_VOICE:
            return 0

        db.query(SamplePost).filter(
            SamplePost.connected_account_id == account.id,
            SamplePost.auto_generated.is_(True),
        ).delete(synchronize_session=False)

        for index, post in enumerate(top_posts[:MAX_AUTO_SAMPLES]):
            db.add(SamplePost(
                connected_account_id=account.id,
                content=post.content,
                notes=f"High engagement: {post.like_count or 0} likes, {post.share_count or 0} shares",
                sort_order=index,
                auto_generated=True,
                source_post_id=post.post_id,
            ))
        db.flush()
        db.expire(account, ["sample_posts"])
        return min(len(top_posts), MAX_AUTO_SAMPLES)

    def _describe_voice(self, contents: List[str], style: WritingStyle) -> Optional[str]:
        emoji_usage = "rare"
        if (style.emoji_frequency or 0) > 0.5:
            emoji_usage = "frequent"
        elif (style.emoji_frequency or 0) > 0.2:
            emoji_usage = "occasional"
        numbered = "\n".join(f"{i + 1}. \"{content}\"" for i, content in enumerate(contents))
        prompt = (
            f"Analyze these {len(contents)} social media posts and describe the author's writing voice in 2-3 "
            "concise sentences. Focus on tone, style, personality, and distinctive patterns.\n\n"
            f"Posts:\n{numbered}\n\n"
            "Writing Style Analysis:\n"
            f"- Tone: {style.tone or 'unknown'}\n"
            f"- Average length: {style.avg_length} characters\n"
            f"- Emoji usage: {emoji_usage}\n"
            f"- Common topics: {', '.join((style.common_topics or [])[:3]) or 'varied'}\n\n"
            "Describe this person's voice in a way that helps an AI ghostwriter mimic their style. "
            "Keep it under 200 characters."
        )
        try:
            voice = self.ai_service.complete_text(
                VOICE_SYSTEM_PROMPT, prompt, temperature=0.7, max_tokens=200, operation="describe_voice"
            )
        except Exception as e:
            logger.warning(f"Failed to generate voice description: {e}")
            return None
        return voice[:MAX_VOICE_LENGTH]


_style_analysis_service: Optional[StyleAnalysisService] = None


def get_style_analysis_service() -> StyleAnalysisService:
    global _style_analysis_service
    if _style_analysis_service is None:
        _style_analysis_service = StyleAnalysisService()
    return _style_analysis_service


def set_style_analysis_service(service: Optional[StyleAnalysisService]):
    global _style_analysis_service
    _style_analysis_service = service
