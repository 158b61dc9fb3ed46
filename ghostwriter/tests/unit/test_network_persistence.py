"""
Unit tests for idempotent network persistence on SQLite
"""
from datetime import timedelta

import pytest

from ghostwriter.db.models import NetworkPost, NetworkProfile, UserPostHistory
from ghostwriter.services.network_persistence import NetworkPersistence, PostOwner
from ghostwriter.tests.fixtures.factories import make_account, make_curated_topic, make_tweet
from ghostwriter.utils.timeutils import utc_now


class TestPostOwner:

    def test_requires_exactly_one_owner(self):
        with pytest.raises(ValueError):
            PostOwner()
        with pytest.raises(ValueError):
            PostOwner(connected_account_id=1, curated_topic_id=2)

    def test_key_column(self):
        assert PostOwner(connected_account_id=1).key_column == "connected_account_id"
        assert PostOwner(curated_topic_id=2).key_column == "curated_topic_id"


class TestNetworkPersistence:
    """Natural-key upserts"""

    @pytest.fixture(autouse=True)
    def setup(self, db_session):
        self.db = db_session
        self.persistence = NetworkPersistence()
        self.account = make_account(db_session)

    def test_upsert_post_is_idempotent(self):
        tweet = make_tweet("t-1", likes=5, shares=3, replies=2)
        owner = PostOwner(connected_account_id=self.account.id)

        first_id = self.persistence.upsert_post(self.db, owner, "twitter", tweet, ["AI"])
        second_id = self.persistence.upsert_post(self.db, owner, "twitter", tweet, ["AI"])
        self.db.commit()

        assert first_id == second_id
        assert self.db.query(NetworkPost).count() == 1
        post = self.db.query(NetworkPost).one()
        assert post.engagement_score == 14.0
        assert post.topics == ["AI"]

    def test_upsert_post_refreshes_mutable_fields_only(self):
        owner = PostOwner(connected_account_id=self.account.id)
        self.persistence.upsert_post(self.db, owner, "twitter", make_tweet("t-1", content="Great launch", likes=1), ["AI"])
        self.persistence.upsert_post(
            self.db, owner, "twitter", make_tweet("t-1", content="Edited text", likes=10), ["Launches"]
        )
        self.db.commit()

        post = self.db.query(NetworkPost).one()
        assert post.like_count == 10
        assert post.topics == ["Launches"]
        assert post.content == "Great launch"
        assert post.sentiment == "positive"

    def test_write_timeline_page_isolates_bad_items(self):
        posts = [make_tweet("t-1"), {"content": "missing id"}, make_tweet("t-3", author_id="2002")]
        topics = [["AI"], ["Broken"], ["Evals"]]

        result = self.persistence.write_timeline_page(self.db, self.account.id, "twitter", posts, topics)
        self.db.commit()

        assert result.written == 2
        assert result.failed == 1
        assert len(result.profile_ids) == 2
        assert {p.post_id for p in self.db.query(NetworkPost).all()} == {"t-1", "t-3"}
        assert self.db.query(NetworkProfile).count() == 2

    def test_write_timeline_page_twice_keeps_one_row_per_post(self):
        posts = [make_tweet("t-1"), make_tweet("t-2")]

        self.persistence.write_timeline_page(self.db, self.account.id, "twitter", posts, [[], []])
        self.persistence.write_timeline_page(self.db, self.account.id, "twitter", posts, [[], []])
        self.db.commit()

        assert self.db.query(NetworkPost).count() == 2
        assert self.db.query(NetworkProfile).count() == 1

    def test_same_post_id_for_account_and_curated_topic(self):
        topic = make_curated_topic(self.db)
        tweet = make_tweet("shared-1")

        self.persistence.write_timeline_page(self.db, self.account.id, "twitter", [tweet], [[]])
        self.persistence.write_curated_page(self.db, topic.id, "twitter", [tweet], [["AI"]])
        self.db.commit()

        rows = self.db.query(NetworkPost).filter(NetworkPost.post_id == "shared-1").all()
        assert len(rows) == 2
        curated = [row for row in rows if row.curated_topic_id == topic.id][0]
        assert curated.connected_account_id is None
        assert curated.network_profile_id is None

    def test_recompute_profile_engagement_uses_trailing_window(self):
        now = utc_now()
        posts = [
            make_tweet("t-1", likes=10, shares=0, replies=0),
            make_tweet("t-2", likes=20, shares=0, replies=0),
        ]
        old = make_tweet("t-3", likes=1000, shares=0, replies=0)
        old["posted_at"] = now - timedelta(days=45)
        result = self.persistence.write_timeline_page(self.db, self.account.id, "twitter", posts + [old], [[], [], []])

        scores = self.persistence.recompute_profile_engagement(self.db, list(result.profile_ids), now=now, window_days=30)
        self.db.commit()

        profile_id = next(iter(result.profile_ids))
        assert scores == {profile_id: 15.0}
        profile = self.db.get(NetworkProfile, profile_id)
        assert profile.engagement_score == 15.0
        assert profile.relevance_score == 15.0

    def test_recompute_profile_without_posts_is_zero(self):
        profile_id = self.persistence.upsert_profile(self.db, self.account.id, "twitter", "3003", "quiet")

        assert self.persistence.recompute_profile_engagement(self.db, [profile_id]) == {profile_id: 0.0}

    def test_upsert_following(self):
        profiles = [
            {"platform_user_id": "4001", "username": "alice", "display_name": "Alice"},
            {"username": "no-id"},
        ]

        result = self.persistence.upsert_following(self.db, self.account.id, "twitter", profiles)
        self.db.commit()

        assert result.written == 1
        assert result.failed == 1
        assert self.db.query(NetworkProfile).one().username == "alice"

    def test_store_post_history_is_insert_only(self):
        posts = [make_tweet("own-1", likes=3), make_tweet("own-2")]

        assert self.persistence.store_post_history(self.db, self.account.id, posts) == 2
        posts[0]["like_count"] = 300
        assert self.persistence.store_post_history(self.db, self.account.id, posts) == 0
        self.db.commit()

        row = self.db.query(UserPostHistory).filter(UserPostHistory.post_id == "own-1").one()
        assert row.like_count == 3
