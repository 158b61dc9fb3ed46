"""
Extraction & Scoring

Pure scoring helpers and the batched AI topic extractor. Scores are a fixed
weighted sum evaluated in a fixed order so the same counters always produce
the same float. Topic extraction never fails a sync: any unusable response
yields an empty topic list for every post.
"""
import re
import logging
from typing import Dict, Any, List, Optional, Sequence

from ghostwriter.core.exceptions import AIResponseError
from ghostwriter.core.structured_logging import structured_logger_service, PipelineStage, LogLevel
from ghostwriter.services.ai_service import AIService, get_ai_service

logger = logging.getLogger(__name__)

LIKE_WEIGHT = 1.0
SHARE_WEIGHT = 2.0
REPLY_WEIGHT = 1.5

MAX_TOPICS_PER_POST = 4
DEFAULT_TOPIC_BATCH_SIZE = 10

POSITIVE_PATTERN = re.compile(r"\b(good|great|awesome|love|excellent|amazing|wonderful|fantastic)\b", re.IGNORECASE)
NEGATIVE_PATTERN = re.compile(r"\b(bad|terrible|awful|hate|horrible|disappointing|worst)\b", re.IGNORECASE)

TOPIC_SYSTEM_PROMPT = "You extract topics from social media posts. Return only valid JSON."


def _counter(value) -> int:
    try:
        value = int(value or 0)
    except (TypeError, ValueError):
        return 0
    return value if value > 0 else 0


def calculate_engagement_score(likes, shares, replies) -> float:
    """Weighted engagement: 1.0 x likes + 2.0 x shares + 1.5 x replies"""
    score = 0.0
    score += LIKE_WEIGHT * _counter(likes)
    score += SHARE_WEIGHT * _counter(shares)
    score += REPLY_WEIGHT * _counter(replies)
    return score


def analyze_sentiment(text: Optional[str]) -> str:
    """Keyword sentiment: positive, negative or neutral"""
    if not text:
        return "neutral"
    if POSITIVE_PATTERN.search(text):
        return "positive"
    if NEGATIVE_PATTERN.search(text):
        return "negative"
    return "neutral"


def clean_topics(raw) -> List[str]:
    """Keep non-empty strings, stripped and de-duplicated, at most four"""
    if not isinstance(raw, list):
        return []
    topics: List[str] = []
    seen = set()
    for item in raw:
        if not isinstance(item, str):
            continue
        topic = item.strip()
        if not topic or topic.lower() in seen:
            continue
        seen.add(topic.lower())
        topics.append(topic)
        if len(topics) >= MAX_TOPICS_PER_POST:
            break
    return topics


class TopicExtractor:
    """Batched AI topic classification, positionally aligned with its input"""

    def __init__(self, ai_service: Optional[AIService] = None):
        self._ai_service = ai_service

    @property
    def ai_service(self) -> AIService:
        if self._ai_service is None:
            self._ai_service = get_ai_service()
        return self._ai_service

    @staticmethod
    def _build_prompt(contents: Sequence[str]) -> str:
        numbered = "\n".join(f"{i + 1}. {content}" for i, content in enumerate(contents))
        return (
            "Extract 2-4 main topics from each of these social media posts. Topics should be specific "
            "concepts, projects, events, or themes being discussed (e.g., \"DeFi protocol audits\", "
            "\"NFT airdrops\", \"Monad ecosystem\").\n\n"
            f"Posts:\n{numbered}\n\n"
            "Return ONLY a JSON object with a \"topics\" array where each element is an array of topic strings, "
            "one element per post in the same order:\n"
            "{\"topics\": [[\"topic1\", \"topic2\"], [\"topic3\", \"topic4\"], ...]}"
        )

    def extract_topics(self, posts: Sequence[Dict[str, Any]]) -> List[List[str]]:
        """
        Classify a page of posts in one AI request.

        Returns:
            One topic list per input post. Malformed or misaligned output gives
            an empty list for every post.
        """
        if not posts:
            return []

        empty = [[] for _ in posts]
        contents = [post.get("content") or "" for post in posts]

        try:
            result = self.ai_service.complete_json(
                TOPIC_SYSTEM_PROMPT,
                self._build_prompt(contents),
                temperature=0.3,
                max_tokens=500,
                operation="extract_topics",
            )
        except AIResponseError as e:
            logger.warning(f"Topic extraction returned malformed output: {e}")
            self._log_degraded(len(posts), str(e))
            return empty
        except Exception as e:
            logger.warning(f"Topic extraction failed, continuing without topics: {e}")
            self._log_degraded(len(posts), str(e))
            return empty

        topics = result.get("topics")
        if not isinstance(topics, list) or len(topics) != len(posts):
            logger.warning(
                f"Topic extraction misaligned: expected {len(posts)} entries, "
                f"got {len(topics) if isinstance(topics, list) else type(topics).__name__}"
            )
            self._log_degraded(len(posts), "misaligned response")
            return empty

        return [clean_topics(entry) for entry in topics]

    def extract_topics_in_batches(self, posts: Sequence[Dict[str, Any]], batch_size: int = DEFAULT_TOPIC_BATCH_SIZE) -> List[List[str]]:
        """Classify a long page in fixed-size batches; each batch degrades independently"""
        topics: List[List[str]] = []
        for start in range(0, len(posts), batch_size):
            topics.extend(self.extract_topics(posts[start:start + batch_size]))
        return topics

    @staticmethod
    def _log_degraded(post_count: int, reason: str):
        structured_logger_service.log_stage(
            PipelineStage.EXTRACTION,
            action="topics_degraded",
            message=f"Topic extraction degraded to empty topics for {post_count} posts",
            level=LogLevel.WARNING,
            metadata={"post_count": post_count, "reason": reason},
        )
