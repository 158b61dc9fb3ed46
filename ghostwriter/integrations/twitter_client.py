"""
X/Twitter API v2 client

Read-only client used by the sync pipeline:
- Home timeline and authored tweets for a connected account (user token)
- Followed accounts for network profile refresh (user token)
- List tweets for curated topics (app bearer token)

Responses are normalized into plain dicts so the rest of the pipeline never
sees the API's nested shape.
"""
import logging
from typing import Dict, Any, Optional, List
from dataclasses import dataclass

import requests

from ghostwriter.core.config import get_settings
from ghostwriter.core.exceptions import NetworkAPIError
from ghostwriter.utils.timeutils import parse_timestamp

logger = logging.getLogger(__name__)


class TwitterAPIError(NetworkAPIError):
    """Twitter API specific exceptions"""


TWEET_FIELDS = "created_at,public_metrics,author_id,conversation_id"
USER_FIELDS = "username,name,verified,public_metrics"


@dataclass
class TwitterConfig:
    """Twitter API configuration"""
    base_url: str = "https://api.twitter.com/2"
    bearer_token: Optional[str] = None
    timeout: int = 30


class TwitterClient:
    """Thin requests-based client for the endpoints the pipeline reads"""

    def __init__(self, config: Optional[TwitterConfig] = None, session: Optional[requests.Session] = None):
        if config is None:
            settings = get_settings()
            config = TwitterConfig(
                base_url=settings.twitter_api_base_url,
                bearer_token=settings.twitter_bearer_token,
                timeout=settings.network_request_timeout,
            )
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': 'Ghostwriter-Sync/1.0',
            'Accept': 'application/json',
        })

    def _get(self, path: str, token: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"
        try:
            response = self.session.get(
                url,
                params=params,
                headers={'Authorization': f'Bearer {token}'},
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise TwitterAPIError(f"Twitter request failed: {e}") from e

        if response.status_code >= 400:
            try:
                data = response.json()
            except ValueError:
                data = {"raw": response.text}
            raise TwitterAPIError(
                f"Twitter API error {response.status_code} for {path}",
                status_code=response.status_code,
                response_data=data,
            )

        return response.json()

    @staticmethod
    def _normalize_tweets(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        users = {
            user["id"]: user
            for user in (payload.get("includes") or {}).get("users", [])
        }
        tweets = []
        for tweet in payload.get("data") or []:
            metrics = tweet.get("public_metrics") or {}
            author = users.get(tweet.get("author_id"), {})
            tweets.append({
                "post_id": tweet["id"],
                "content": tweet.get("text", ""),
                "author_id": tweet.get("author_id"),
                "author_username": author.get("username"),
                "author_name": author.get("name"),
                "posted_at": parse_timestamp(tweet.get("created_at")),
                "like_count": metrics.get("like_count", 0),
                "share_count": metrics.get("retweet_count", 0),
                "reply_count": metrics.get("reply_count", 0),
                "quote_count": metrics.get("quote_count", 0),
            })
        return tweets

    def get_home_timeline(self, access_token: str, user_id: str, max_results: int = 10) -> List[Dict[str, Any]]:
        """Reverse-chronological home timeline for the connected account"""
        payload = self._get(
            f"users/{user_id}/timelines/reverse_chronological",
            access_token,
            params={
                "max_results": max_results,
                "tweet.fields": TWEET_FIELDS,
                "expansions": "author_id",
                "user.fields": USER_FIELDS,
            },
        )
        tweets = self._normalize_tweets(payload)
        logger.debug(f"Fetched {len(tweets)} timeline tweets for user {user_id}")
        return tweets

    def get_user_tweets(self, access_token: str, user_id: str, max_results: int = 100) -> List[Dict[str, Any]]:
        """Tweets authored by the connected account (retweets and replies excluded)"""
        payload = self._get(
            f"users/{user_id}/tweets",
            access_token,
            params={
                "max_results": max_results,
                "tweet.fields": TWEET_FIELDS,
                "exclude": "retweets,replies",
            },
        )
        return self._normalize_tweets(payload)

    def get_following(self, access_token: str, user_id: str, max_results: int = 100) -> List[Dict[str, Any]]:
        """Profiles the connected account follows"""
        payload = self._get(
            f"users/{user_id}/following",
            access_token,
            params={"max_results": max_results, "user.fields": USER_FIELDS},
        )
        return [
            {
                "platform_user_id": user["id"],
                "username": user.get("username"),
                "display_name": user.get("name"),
            }
            for user in payload.get("data") or []
        ]

    def get_list_tweets(self, list_id: str, max_results: int = 100, bearer_token: Optional[str] = None) -> List[Dict[str, Any]]:
        """Tweets from a curated list, read with the app bearer token"""
        token = bearer_token or self.config.bearer_token
        if not token:
            raise TwitterAPIError("Twitter bearer token not configured")
        payload = self._get(
            f"lists/{list_id}/tweets",
            token,
            params={
                "max_results": max_results,
                "tweet.fields": TWEET_FIELDS,
                "expansions": "author_id",
                "user.fields": USER_FIELDS,
            },
        )
        return self._normalize_tweets(payload)


_twitter_client: Optional[TwitterClient] = None


def get_twitter_client() -> TwitterClient:
    global _twitter_client
    if _twitter_client is None:
        _twitter_client = TwitterClient()
    return _twitter_client


def set_twitter_client(client: Optional[TwitterClient]):
    global _twitter_client
    _twitter_client = client
