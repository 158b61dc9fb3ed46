"""
Network API Rate-Limit Gate

Sliding-window admission control in front of the social network API. Each
(resource, subject) pair has its own Redis sorted set of call timestamps, so
windows are shared by every worker process.

An allowed check consumes a slot in the window. A denied check returns the
number of seconds until the oldest call leaves the window. Denial is a
scheduling signal for the caller, never an exception. Redis failures fail
closed with a fixed retry delay.
"""
import math
import time
import uuid
import logging
from typing import Dict, Optional, Any
from dataclasses import dataclass

import redis

from ghostwriter.core.config import get_settings
from ghostwriter.core.monitoring import pipeline_metrics
from ghostwriter.core.structured_logging import structured_logger_service, PipelineStage, LogLevel

logger = logging.getLogger(__name__)

KEY_PREFIX = "network_rate_limit"
REDIS_ERROR_RETRY_SECONDS = 60
MAX_TRANSACTION_RETRIES = 5


@dataclass(frozen=True)
class RateLimitWindow:
    """Allowed number of calls per sliding window"""
    limit: int
    window_seconds: int


# Per-resource windows for the X/Twitter v2 API (15 minute windows)
DEFAULT_WINDOWS: Dict[str, RateLimitWindow] = {
    "timeline": RateLimitWindow(limit=5, window_seconds=15 * 60),
    "user_tweets": RateLimitWindow(limit=100, window_seconds=15 * 60),
    "following": RateLimitWindow(limit=15, window_seconds=15 * 60),
    "list_tweets": RateLimitWindow(limit=900, window_seconds=15 * 60),
    "user_me": RateLimitWindow(limit=75, window_seconds=15 * 60),
    "search": RateLimitWindow(limit=180, window_seconds=15 * 60),
}


@dataclass
class RateLimitDecision:
    """Outcome of a gate check"""
    allowed: bool
    retry_after_seconds: int = 0
    remaining: Optional[int] = None
    resource_key: Optional[str] = None
    message: Optional[str] = None


class RateLimitGate:
    """
    Redis sorted-set sliding window limiter.

    Reads and the slot write happen in one WATCH/MULTI transaction, so two
    workers racing on the same window cannot both take the last slot.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, windows: Optional[Dict[str, RateLimitWindow]] = None):
        self.redis_client = redis_client or redis.Redis.from_url(
            get_settings().redis_url,
            socket_connect_timeout=5,
            socket_timeout=10,
        )
        self.windows = dict(windows or DEFAULT_WINDOWS)

    @staticmethod
    def _key(resource_key: str, subject_id: str) -> str:
        return f"{KEY_PREFIX}:{resource_key}:{subject_id}"

    def check_rate_limit(self, resource_key: str, subject_id: str, now: Optional[float] = None) -> RateLimitDecision:
        """
        Check whether one more call to `resource_key` is allowed for `subject_id`.

        Returns:
            RateLimitDecision; when allowed, the call has already been recorded
        """
        window = self.windows.get(resource_key)
        if window is None:
            # Unknown resources are not limited
            return RateLimitDecision(allowed=True, resource_key=resource_key)

        now_ms = int((now if now is not None else time.time()) * 1000)
        try:
            decision = self._check_window(self._key(resource_key, subject_id), window, now_ms)
        except redis.RedisError as e:
            logger.error(f"Rate limit check failed for {resource_key}:{subject_id}: {e}")
            decision = RateLimitDecision(
                allowed=False,
                retry_after_seconds=REDIS_ERROR_RETRY_SECONDS,
                remaining=0,
                message=f"Rate limiter unavailable: {e}",
            )

        decision.resource_key = resource_key
        pipeline_metrics.record_rate_limit(resource_key, decision.allowed)
        if not decision.allowed:
            structured_logger_service.log_stage(
                PipelineStage.RATE_LIMIT,
                action="limit_exceeded",
                message=f"Rate limit exceeded for {resource_key}:{subject_id}, retry after {decision.retry_after_seconds}s",
                level=LogLevel.WARNING,
                metadata={
                    "resource_key": resource_key,
                    "subject_id": subject_id,
                    "limit": window.limit,
                    "window_seconds": window.window_seconds,
                    "retry_after_seconds": decision.retry_after_seconds,
                },
            )
        return decision

    def _check_window(self, key: str, window: RateLimitWindow, now_ms: int) -> RateLimitDecision:
        window_ms = window.window_seconds * 1000
        window_start = now_ms - window_ms

        with self.redis_client.pipeline() as pipe:
            for _ in range(MAX_TRANSACTION_RETRIES):
                try:
                    pipe.watch(key)
                    count = pipe.zcount(key, f"({window_start}", "+inf")
                    oldest = pipe.zrangebyscore(key, f"({window_start}", "+inf", start=0, num=1, withscores=True)

                    pipe.multi()
                    pipe.zremrangebyscore(key, 0, window_start)
                    if count < window.limit:
                        pipe.zadd(key, {f"{now_ms}:{uuid.uuid4().hex}": now_ms})
                        pipe.expire(key, window.window_seconds)
                    pipe.execute()
                except redis.WatchError:
                    continue

                if count < window.limit:
                    return RateLimitDecision(allowed=True, remaining=window.limit - count - 1)

                oldest_ms = oldest[0][1] if oldest else now_ms
                retry_after = math.ceil((oldest_ms + window_ms - now_ms) / 1000)
                return RateLimitDecision(
                    allowed=False,
                    retry_after_seconds=max(1, retry_after),
                    remaining=0,
                    message=f"Rate limit of {window.limit} per {window.window_seconds}s reached",
                )

        raise redis.RedisError(f"Rate limit transaction on {key} kept conflicting")

    def get_status(self, resource_key: str, subject_id: str, now: Optional[float] = None) -> Dict[str, Any]:
        """Current usage of a window without consuming a slot"""
        window = self.windows.get(resource_key)
        if window is None:
            return {"resource_key": resource_key, "limited": False}

        now_ms = int((now if now is not None else time.time()) * 1000)
        window_start = now_ms - window.window_seconds * 1000
        used = self.redis_client.zcount(self._key(resource_key, subject_id), f"({window_start}", "+inf")
        return {
            "resource_key": resource_key,
            "limited": True,
            "limit": window.limit,
            "used": used,
            "remaining": max(0, window.limit - used),
            "window_seconds": window.window_seconds,
        }

    def reset(self, resource_key: str, subject_id: str) -> bool:
        """Drop a subject's window; operator use only"""
        deleted = self.redis_client.delete(self._key(resource_key, subject_id))
        logger.info(f"Reset rate limit window {resource_key}:{subject_id}")
        return bool(deleted)


_rate_limit_gate: Optional[RateLimitGate] = None


def get_rate_limit_gate() -> RateLimitGate:
    global _rate_limit_gate
    if _rate_limit_gate is None:
        _rate_limit_gate = RateLimitGate()
    return _rate_limit_gate


def set_rate_limit_gate(gate: Optional[RateLimitGate]):
    global _rate_limit_gate
    _rate_limit_gate = gate
