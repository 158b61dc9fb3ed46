"""
Integration tests: network sync and curated topic digests feeding suggestion generation.
External services (network API and AI model) are mocked; storage and rate limiting are real.
"""
import random
from datetime import timedelta
from unittest.mock import Mock

import pytest

from ghostwriter.core.config import Settings
from ghostwriter.core.exceptions import SuggestionStateError
from ghostwriter.db.models import NetworkPost, PostSuggestion, SyncStatus, TrendingTopic, UserTopicPreference
from ghostwriter.services.ai_service import AIService
from ghostwriter.services.curated_topic_service import CuratedTopicService
from ghostwriter.services.extraction_service import TopicExtractor
from ghostwriter.services.network_sync_service import NetworkSyncService, SyncOutcome
from ghostwriter.services.rate_limiter import RateLimitGate
from ghostwriter.services.suggestion_lifecycle import SuggestionLifecycleManager
from ghostwriter.services.suggestion_service import GenerationType, SuggestionService, SuggestionType
from ghostwriter.tests.fixtures.factories import make_account, make_curated_topic, make_tweet
from ghostwriter.utils.timeutils import utc_now


def _tag_every_post(system_prompt, user_prompt, **kwargs):
    """Answer a topic extraction prompt with one topic list per numbered post"""
    numbered = user_prompt.split("Posts:\n", 1)[1].split("\n\n", 1)[0]
    return {"topics": [["Evals"] for _ in numbered.splitlines()]}


@pytest.mark.integration
class TestSyncThenGenerateFlow:

    @pytest.fixture(autouse=True)
    def setup(self, db_session, fake_redis, mock_job_queue, token_cipher):
        self.db = db_session
        self.job_queue = mock_job_queue
        self.settings = Settings()
        self.gate = RateLimitGate(redis_client=fake_redis)

        self.twitter = Mock()
        self.twitter.get_home_timeline.return_value = [
            make_tweet("t-1", content="Evals are eating the model release cycle", likes=120, shares=30),
            make_tweet("t-2", content="Quiet Friday", author_id="2002", likes=1, shares=0, replies=0),
        ]
        self.twitter.get_following.return_value = [
            {"platform_user_id": "2001", "username": "user2001", "display_name": "User 2001"},
        ]
        self.twitter.get_list_tweets.return_value = [
            make_tweet(f"c-{i}", content=f"Curated post {i} on agent benchmarks", author_id="4001", likes=i)
            for i in range(10)
        ]

        self.extractor_ai = Mock(spec=AIService)
        self.extractor_ai.complete_json.side_effect = _tag_every_post
        self.generation_ai = Mock(spec=AIService)
        self.generation_ai.complete_json.return_value = {"suggestions": [
            {"type": "reply", "source_post_id": "t-1", "content": "Evals are the real product spec",
             "angle": "hot_take", "length": "short", "topics": ["Evals"], "inspired_by_posts": [0]},
            {"content": "What is your favorite eval that caught a real bug?",
             "angle": "question", "length": "short", "topics": ["Evals"]},
        ]}

        extractor = TopicExtractor(ai_service=self.extractor_ai)
        self.sync_service = NetworkSyncService(
            rate_limit_gate=self.gate,
            job_queue=self.job_queue,
            twitter_client=self.twitter,
            topic_extractor=extractor,
            token_cipher=token_cipher,
            settings=self.settings,
        )
        self.topic_service = CuratedTopicService(
            twitter_client=self.twitter,
            ai_service=self.generation_ai,
            topic_extractor=extractor,
            rate_limit_gate=self.gate,
            job_queue=self.job_queue,
            settings=self.settings,
        )
        self.lifecycle = SuggestionLifecycleManager(ttl=timedelta(hours=24), retention=timedelta(days=7))
        self.suggestion_service = SuggestionService(
            ai_service=self.generation_ai,
            lifecycle=self.lifecycle,
            rng=random.Random(3),
            settings=self.settings,
        )
        self.account = make_account(db_session, token_cipher=token_cipher)

    def test_synced_posts_become_reply_suggestions(self):
        sync = self.sync_service.sync_account(self.db, self.account.id)
        self.db.refresh(self.account)
        assert sync.outcome == SyncOutcome.READY
        assert self.account.sync_status == SyncStatus.READY

        result = self.suggestion_service.generate_suggestions(self.db, self.account.id, count=2)

        assert result.success is True
        assert result.generation_type == GenerationType.NETWORK_BASED
        assert result.suggestions_generated == 2

        source = self.db.query(NetworkPost).filter_by(connected_account_id=self.account.id, post_id="t-1").one()
        reply = self.db.query(PostSuggestion).filter_by(suggestion_type=SuggestionType.REPLY).one()
        assert reply.source_post_id == source.id
        assert reply.inspired_by_post_ids == [source.id]

        user_prompt = self.generation_ai.complete_json.call_args[0][1]
        assert user_prompt.index("(id: t-1)") < user_prompt.index("(id: t-2)")

    def test_consumption_is_one_way_across_services(self):
        self.sync_service.sync_account(self.db, self.account.id)
        self.suggestion_service.generate_suggestions(self.db, self.account.id, count=2)
        active = self.lifecycle.list_active(self.db, self.account.id)
        assert len(active) == 2

        self.lifecycle.mark_used(self.db, active[0].id)
        self.db.commit()

        with pytest.raises(SuggestionStateError):
            self.lifecycle.mark_dismissed(self.db, active[0].id)
        assert len(self.lifecycle.list_active(self.db, self.account.id)) == 1
        later = utc_now() + timedelta(hours=25)
        assert self.lifecycle.list_active(self.db, self.account.id, now=later) == []

    def test_curated_digest_feeds_generation(self):
        topic = make_curated_topic(self.db)
        self.db.add(UserTopicPreference(connected_account_id=self.account.id, curated_topic_id=topic.id))
        self.db.commit()

        synced = self.topic_service.sync_curated_topic(self.db, topic.id)
        assert synced.posts_synced == 10

        self.generation_ai.complete_json.return_value = {"trending_topics": [
            {"topic": "Agent benchmarks", "context": "Leaderboards are saturating", "post_indices": [0, 1]},
        ]}
        digest = self.topic_service.digest_curated_topic(self.db, topic.id)
        assert digest.trending_topics_stored == 1
        trending = self.db.query(TrendingTopic).one()
        assert trending.mention_count == 2

        self.generation_ai.complete_json.return_value = {"suggestions": [
            {"content": "Benchmarks saturate faster than we can name them", "angle": "hot_take", "length": "short"},
        ]}
        result = self.suggestion_service.generate_suggestions(self.db, self.account.id, count=1)

        user_prompt = self.generation_ai.complete_json.call_args[0][1]
        assert result.suggestions_generated == 1
        assert "Agent benchmarks (2 mentions" in user_prompt
        assert "Leaderboards are saturating" in user_prompt
        assert "Curated post 9 on agent benchmarks" in user_prompt
