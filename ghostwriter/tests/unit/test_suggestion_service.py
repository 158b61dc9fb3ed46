"""
Unit tests for strategy selection, generation batches and output parsing
"""
import random
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from ghostwriter.core.config import Settings
from ghostwriter.core.exceptions import AIResponseError
from ghostwriter.db.models import PostSuggestion, SuggestionStatus, SyncMetadata, TrendingTopic, UserTopicPreference
from ghostwriter.services.ai_service import AIService
from ghostwriter.services.prompt_builder import ANGLES, SuggestionSlot
from ghostwriter.services.suggestion_lifecycle import SuggestionLifecycleManager
from ghostwriter.services.suggestion_service import (
    GenerationType,
    InterestBasedStrategy,
    NetworkBasedStrategy,
    SuggestionService,
    SuggestionType,
    compute_network_topics,
    parse_suggestions,
)
from ghostwriter.tests.fixtures.factories import make_account, make_curated_topic, make_network_post, make_sample
from ghostwriter.utils.timeutils import ensure_utc

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _suggestion(content, **extra):
    entry = {"content": content, "reasoning": "Fits the voice", "angle": "teach", "length": "short", "topics": ["AI"]}
    entry.update(extra)
    return entry


class TestParseSuggestions:

    def setup_method(self):
        self.slots = [SuggestionSlot("hot_take", "short"), SuggestionSlot("story", "long")]

    def test_missing_suggestions_array(self):
        with pytest.raises(AIResponseError):
            parse_suggestions({"posts": []}, self.slots)

    def test_truncates_to_requested_count(self):
        raw = {"suggestions": [_suggestion("one"), _suggestion("two"), _suggestion("three")]}

        parsed = parse_suggestions(raw, self.slots)

        assert [p.content for p in parsed] == ["one", "two"]

    def test_invalid_fields_fall_back_to_slot(self):
        raw = {"suggestions": [
            _suggestion("  padded  ", angle="rant", length="epic", inspired_by_posts=[0, True, "2", 3]),
        ]}

        parsed = parse_suggestions(raw, self.slots)[0]

        assert parsed.content == "padded"
        assert parsed.angle == "hot_take"
        assert parsed.length == "short"
        assert parsed.inspired_by_indices == [0, 3]

    def test_skips_empty_and_non_object_entries(self):
        raw = {"suggestions": ["not an object", _suggestion("   ")]}

        assert parse_suggestions(raw, self.slots) == []

    def test_reply_requires_source(self):
        raw = {"suggestions": [
            _suggestion("reply with source", type="reply", source_post_id=12345),
            _suggestion("reply without source", type="reply"),
        ]}

        parsed = parse_suggestions(raw, self.slots)

        assert parsed[0].suggestion_type == SuggestionType.REPLY
        assert parsed[0].source_external_post_id == "12345"
        assert parsed[1].suggestion_type == SuggestionType.ORIGINAL_POST
        assert parsed[1].source_external_post_id is None


class TestComputeNetworkTopics:

    def test_aggregates_case_insensitively(self):
        posts = [
            Mock(topics=["AI", "Evals"], engagement_score=10.0),
            Mock(topics=["ai", "", None], engagement_score=5.0),
            Mock(topics=None, engagement_score=100.0),
        ]

        topics = compute_network_topics(posts)

        assert [(t.topic, t.mention_count, t.total_engagement) for t in topics] == [
            ("AI", 2, 15.0),
            ("Evals", 1, 10.0),
        ]


class TestSuggestionService:

    @pytest.fixture(autouse=True)
    def setup(self, db_session):
        self.db = db_session
        self.ai_service = Mock(spec=AIService)
        self.ai_service.complete_json.return_value = {"suggestions": [_suggestion("First"), _suggestion("Second")]}
        self.service = SuggestionService(
            ai_service=self.ai_service,
            lifecycle=SuggestionLifecycleManager(ttl=timedelta(hours=24), retention=timedelta(days=7)),
            rng=random.Random(7),
            settings=Settings(default_suggestion_count=2, network_lookback_hours=48),
        )

    def _user_prompt(self, call_index=-1):
        return self.ai_service.complete_json.call_args_list[call_index][0][1]

    def test_strategy_follows_platform_class(self):
        twitter = make_account(self.db)
        ghost = make_account(self.db, platform="ghost", platform_user_id="ghost-1")

        assert isinstance(self.service.select_strategy(twitter), NetworkBasedStrategy)
        assert isinstance(self.service.select_strategy(ghost), InterestBasedStrategy)

    def test_slots_cover_requested_count(self):
        slots = self.service._slots(4)

        assert len(slots) == 4
        assert all(slot.angle in ANGLES for slot in slots)

    def test_unknown_and_inactive_accounts(self):
        inactive = make_account(self.db, is_active=False)

        assert self.service.generate_suggestions(self.db, 999, now=NOW).success is False
        result = self.service.generate_suggestions(self.db, inactive.id, now=NOW)
        assert result.success is False
        assert result.message == "Connected account is inactive"
        self.ai_service.complete_json.assert_not_called()

    def test_network_without_sources_needs_more_input(self):
        account = make_account(self.db)

        result = self.service.generate_suggestions(self.db, account.id, now=NOW)

        assert result.success is False
        assert result.need_more_input is True
        assert result.generation_type == GenerationType.NETWORK_BASED
        self.ai_service.complete_json.assert_not_called()

    def test_network_generation_maps_posts_and_replies(self):
        account = make_account(self.db)
        top = make_network_post(self.db, connected_account_id=account.id, post_id="p-1",
                                engagement_score=30.0, posted_at=NOW - timedelta(hours=2), topics=["Evals"])
        newer = make_network_post(self.db, connected_account_id=account.id, post_id="p-2",
                                  engagement_score=10.0, posted_at=NOW - timedelta(hours=1), topics=["Agents"])
        self.ai_service.complete_json.return_value = {"suggestions": [
            _suggestion("Replying to the evals thread", type="reply", source_post_id="p-1", inspired_by_posts=[0, 7]),
            _suggestion("Reply to a post we never saw", type="reply", source_post_id="p-404", inspired_by_posts=[1]),
        ]}

        result = self.service.generate_suggestions(self.db, account.id, now=NOW)

        assert result.success is True
        assert result.suggestions_generated == 2
        rows = {s.content: s for s in self.db.query(PostSuggestion).all()}
        reply = rows["Replying to the evals thread"]
        assert reply.suggestion_type == SuggestionType.REPLY
        assert reply.source_post_id == top.id
        assert reply.inspired_by_post_ids == [top.id]
        assert reply.generation_type == GenerationType.NETWORK_BASED
        degraded = rows["Reply to a post we never saw"]
        assert degraded.suggestion_type == SuggestionType.ORIGINAL_POST
        assert degraded.source_post_id is None
        assert degraded.inspired_by_post_ids == [newer.id]

        prompt = self._user_prompt()
        assert prompt.index("(id: p-1)") < prompt.index("(id: p-2)")
        assert "Evals (1 mentions, 30 total engagement)" in prompt

        metadata = self.db.query(SyncMetadata).filter_by(connected_account_id=account.id).one()
        assert ensure_utc(metadata.suggestion_high_water_mark) == NOW - timedelta(hours=1)

    def test_network_runs_are_incremental(self):
        account = make_account(self.db, topics_of_interest="AI evaluation")
        make_network_post(self.db, connected_account_id=account.id, post_id="p-1", posted_at=NOW - timedelta(hours=1))

        self.service.generate_suggestions(self.db, account.id, now=NOW)
        assert "(id: p-1)" in self._user_prompt()

        self.service.generate_suggestions(self.db, account.id, now=NOW + timedelta(minutes=5))
        second = self._user_prompt()
        assert "(id: p-1)" not in second
        assert "NO NETWORK POSTS AVAILABLE" in second
        assert "AI evaluation" in second

    def test_network_includes_curated_trending_topics(self):
        account = make_account(self.db)
        topic = make_curated_topic(self.db)
        curated_post = make_network_post(self.db, curated_topic_id=topic.id, post_id="c-1", content="Curated insight")
        self.db.add(UserTopicPreference(connected_account_id=account.id, curated_topic_id=topic.id))
        self.db.add(TrendingTopic(
            curated_topic_id=topic.id, topic_name="Small models", context="Distillation wins",
            mention_count=4, total_engagement=80.0, sample_post_ids=[curated_post.id],
            detected_at=NOW, expires_at=NOW + timedelta(hours=48),
        ))
        self.db.add(TrendingTopic(
            curated_topic_id=topic.id, topic_name="Stale topic", mention_count=1, total_engagement=1.0,
            sample_post_ids=[], detected_at=NOW - timedelta(days=3), expires_at=NOW - timedelta(hours=1),
        ))
        self.db.commit()

        result = self.service.generate_suggestions(self.db, account.id, now=NOW)

        prompt = self._user_prompt()
        assert result.success is True
        assert "Small models (4 mentions, 80 total engagement): Distillation wins" in prompt
        assert "Stale topic" not in prompt
        assert "(id: c-1)" in prompt

    def test_malformed_output_saves_nothing(self):
        account = make_account(self.db, topics_of_interest="AI evaluation")
        self.ai_service.complete_json.return_value = {"ideas": ["not the contract"]}

        result = self.service.generate_suggestions(self.db, account.id, now=NOW)

        assert result.success is False
        assert result.suggestions_generated == 0
        assert self.db.query(PostSuggestion).count() == 0

    def test_ai_response_error_saves_nothing(self):
        account = make_account(self.db, topics_of_interest="AI evaluation")
        self.ai_service.complete_json.side_effect = AIResponseError("invalid JSON")

        result = self.service.generate_suggestions(self.db, account.id, now=NOW)

        assert result.success is False
        assert self.db.query(PostSuggestion).count() == 0

    def test_transport_errors_propagate(self):
        account = make_account(self.db, topics_of_interest="AI evaluation")
        self.ai_service.complete_json.side_effect = ConnectionError("upstream down")

        with pytest.raises(ConnectionError):
            self.service.generate_suggestions(self.db, account.id, now=NOW)

    def test_stale_suggestions_expire_before_generation(self):
        account = make_account(self.db, topics_of_interest="AI evaluation")
        stale = self.service.lifecycle.create_suggestion(
            self.db, now=NOW - timedelta(days=2), account_id=account.account_id,
            connected_account_id=account.id, content="Old idea", generation_type=GenerationType.NETWORK_BASED,
        )
        self.db.commit()

        result = self.service.generate_suggestions(self.db, account.id, now=NOW)

        self.db.expire_all()
        assert result.expired_count == 1
        assert self.db.get(PostSuggestion, stale.id).status == SuggestionStatus.EXPIRED
        assert len(self.service.lifecycle.list_active(self.db, account.id, now=NOW)) == 2

    def test_interest_without_sources_needs_more_input(self):
        account = make_account(self.db, platform="ghost", platform_user_id="ghost-1")

        result = self.service.generate_suggestions(self.db, account.id, now=NOW)

        assert result.need_more_input is True
        assert result.generation_type == GenerationType.INTEREST_BASED
        self.ai_service.complete_text.assert_not_called()

    def test_interest_infers_topics_once(self):
        account = make_account(self.db, platform="ghost", platform_user_id="ghost-1")
        make_sample(self.db, account, "Compilers are just very patient translators")
        make_sample(self.db, account, "Every Rust borrow error is a tiny code review")
        self.ai_service.complete_text.return_value = '"Rust, compilers, developer tooling"'

        first = self.service.generate_suggestions(self.db, account.id, now=NOW)
        second = self.service.generate_suggestions(self.db, account.id, now=NOW + timedelta(minutes=1))

        self.db.refresh(account)
        assert first.success is True
        assert second.success is True
        assert first.generation_type == GenerationType.INTEREST_BASED
        assert account.topics_of_interest == "Rust, compilers, developer tooling"
        self.ai_service.complete_text.assert_called_once()
        assert "Rust, compilers, developer tooling" in self._user_prompt()

    def test_interest_skips_inference_with_curated_topics(self):
        account = make_account(self.db, platform="ghost", platform_user_id="ghost-1")
        make_sample(self.db, account, "A sample post")
        topic = make_curated_topic(self.db)
        self.db.add(UserTopicPreference(connected_account_id=account.id, curated_topic_id=topic.id))
        self.db.commit()

        result = self.service.generate_suggestions(self.db, account.id, now=NOW)

        assert result.success is True
        self.ai_service.complete_text.assert_not_called()

    def test_failed_inference_still_generates_from_samples(self):
        account = make_account(self.db, platform="ghost", platform_user_id="ghost-1")
        make_sample(self.db, account, "A sample post")
        self.ai_service.complete_text.side_effect = AIResponseError("empty completion")

        result = self.service.generate_suggestions(self.db, account.id, now=NOW)

        self.db.refresh(account)
        assert result.success is True
        assert account.topics_of_interest is None
        assert "General themes from the example posts" in self._user_prompt()
