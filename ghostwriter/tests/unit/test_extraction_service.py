"""
Unit tests for engagement scoring, sentiment and batched topic extraction
"""
import pytest
from unittest.mock import Mock

from ghostwriter.core.exceptions import AIResponseError
from ghostwriter.services.extraction_service import (
    TopicExtractor,
    analyze_sentiment,
    calculate_engagement_score,
    clean_topics,
)


class TestEngagementScore:
    """Weighted engagement score"""

    def test_weighted_sum(self):
        assert calculate_engagement_score(5, 3, 2) == 14.0

    def test_all_zero(self):
        assert calculate_engagement_score(0, 0, 0) == 0.0

    def test_missing_and_negative_counters_count_as_zero(self):
        assert calculate_engagement_score(None, -4, "7") == 10.5

    def test_deterministic_for_same_input(self):
        scores = {calculate_engagement_score(123, 45, 67) for _ in range(10)}
        assert scores == {313.5}


class TestSentiment:

    @pytest.mark.parametrize("text,expected", [
        ("This is a great release", "positive"),
        ("Worst outage of the year", "negative"),
        ("Release notes are out", "neutral"),
        ("", "neutral"),
        (None, "neutral"),
    ])
    def test_keyword_sentiment(self, text, expected):
        assert analyze_sentiment(text) == expected


class TestCleanTopics:

    def test_strips_dedupes_and_caps(self):
        raw = [" AI ", "ai", "", 42, "Startups", "Evals", "Agents", "Robotics"]
        assert clean_topics(raw) == ["AI", "Startups", "Evals", "Agents"]

    def test_non_list_gives_empty(self):
        assert clean_topics("AI, startups") == []
        assert clean_topics(None) == []


class TestTopicExtractor:
    """TopicExtractor never fails a page"""

    def setup_method(self):
        self.ai_service = Mock()
        self.extractor = TopicExtractor(ai_service=self.ai_service)
        self.posts = [{"content": "Post one"}, {"content": "Post two"}]

    def test_aligned_response(self):
        self.ai_service.complete_json.return_value = {"topics": [["AI", "Evals"], ["Startups"]]}

        assert self.extractor.extract_topics(self.posts) == [["AI", "Evals"], ["Startups"]]
        kwargs = self.ai_service.complete_json.call_args.kwargs
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 500

    def test_misaligned_response_gives_empty_topics(self):
        self.ai_service.complete_json.return_value = {"topics": [["AI"]]}

        assert self.extractor.extract_topics(self.posts) == [[], []]

    def test_missing_topics_key_gives_empty_topics(self):
        self.ai_service.complete_json.return_value = {"result": "ok"}

        assert self.extractor.extract_topics(self.posts) == [[], []]

    def test_malformed_response_gives_empty_topics(self):
        self.ai_service.complete_json.side_effect = AIResponseError("Invalid JSON")

        assert self.extractor.extract_topics(self.posts) == [[], []]

    def test_transport_error_gives_empty_topics(self):
        self.ai_service.complete_json.side_effect = TimeoutError("read timeout")

        assert self.extractor.extract_topics(self.posts) == [[], []]

    def test_empty_page_makes_no_call(self):
        assert self.extractor.extract_topics([]) == []
        self.ai_service.complete_json.assert_not_called()

    def test_batches_degrade_independently(self):
        posts = [{"content": f"Post {i}"} for i in range(12)]
        self.ai_service.complete_json.side_effect = [
            AIResponseError("bad"),
            {"topics": [["A"], ["B"]]},
        ]

        topics = self.extractor.extract_topics_in_batches(posts, batch_size=10)

        assert len(topics) == 12
        assert topics[:10] == [[]] * 10
        assert topics[10:] == [["A"], ["B"]]
        assert self.ai_service.complete_json.call_count == 2
