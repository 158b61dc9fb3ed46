"""
Job queue adapter over Celery.

Jobs are sent by task name so callers never import task modules. A job may
carry a dedupe key: at most one pending job exists per key. Enqueueing again
with the same key supersedes the earlier job. The earlier task is revoked,
and because a revoke can be lost, every keyed task also calls `claim` when it
starts and exits quietly if a newer job owns the key.
"""
import uuid
import logging
from typing import Dict, Any, Optional

import redis

from ghostwriter.core.config import get_settings

logger = logging.getLogger(__name__)

DEDUPE_KEY_PREFIX = "job_dedupe"
DEDUPE_KEY_TTL_SECONDS = 24 * 60 * 60


class JobType:
    """Registered Celery task names"""
    SYNC_NETWORK = "ghostwriter.tasks.sync_tasks.sync_network"
    DISPATCH_STALE_SYNCS = "ghostwriter.tasks.sync_tasks.dispatch_stale_syncs"
    ANALYZE_STYLE = "ghostwriter.tasks.style_tasks.analyze_style"
    GENERATE_SUGGESTIONS = "ghostwriter.tasks.suggestion_tasks.generate_suggestions"
    GENERATE_SUGGESTIONS_AUTOMATED = "ghostwriter.tasks.suggestion_tasks.generate_suggestions_automated"
    PURGE_SUGGESTIONS = "ghostwriter.tasks.suggestion_tasks.purge_expired_suggestions"
    DISPATCH_CURATED_TOPICS = "ghostwriter.tasks.topic_tasks.dispatch_curated_topics"
    SYNC_CURATED_TOPIC = "ghostwriter.tasks.topic_tasks.sync_curated_topic"
    DIGEST_CURATED_TOPIC = "ghostwriter.tasks.topic_tasks.digest_curated_topic"


def sync_dedupe_key(connected_account_id: int) -> str:
    """Stable key for an account's pending network sync"""
    return f"sync-network-{connected_account_id}"


def _as_str(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


class JobQueue:
    """Enqueue Celery jobs with optional delay and supersede-by-key semantics"""

    def __init__(self, celery_app=None, redis_client: Optional[redis.Redis] = None):
        if celery_app is None:
            from ghostwriter.tasks.celery_app import celery_app as default_app
            celery_app = default_app
        self.celery_app = celery_app
        self.redis_client = redis_client or redis.Redis.from_url(get_settings().redis_url, decode_responses=True)

    @staticmethod
    def _dedupe_redis_key(dedupe_key: str) -> str:
        return f"{DEDUPE_KEY_PREFIX}:{dedupe_key}"

    def enqueue(
        self,
        job_type: str,
        payload: Dict[str, Any],
        delay: Optional[int] = None,
        dedupe_key: Optional[str] = None,
    ) -> str:
        """
        Send a job to Celery.

        Args:
            job_type: Registered Celery task name
            payload: Task keyword arguments
            delay: Seconds before the job becomes eligible to run
            dedupe_key: Stable key; a later enqueue with the same key replaces this job

        Returns:
            Celery task id of the enqueued job
        """
        task_id = str(uuid.uuid4())
        kwargs = dict(payload)

        previous = None
        if dedupe_key:
            kwargs["dedupe_key"] = dedupe_key
            ttl = DEDUPE_KEY_TTL_SECONDS + int(delay or 0)
            # Must be mapped before the task can start
            previous = _as_str(self.redis_client.set(self._dedupe_redis_key(dedupe_key), task_id, ex=ttl, get=True))

        try:
            self.celery_app.send_task(
                job_type,
                kwargs=kwargs,
                countdown=delay if delay else None,
                task_id=task_id,
            )
        except Exception as e:
            if dedupe_key:
                self._restore_mapping(dedupe_key, previous)
            logger.error(f"Failed to enqueue {job_type} (dedupe_key={dedupe_key}): {e}")
            raise

        if previous and previous != task_id:
            self._revoke(previous, dedupe_key)
        logger.info(f"Enqueued {job_type} as {task_id} (delay={delay}, dedupe_key={dedupe_key})")
        return task_id

    def _restore_mapping(self, dedupe_key: str, previous: Optional[str]):
        """Point the key back at the job that is still queued"""
        redis_key = self._dedupe_redis_key(dedupe_key)
        if previous:
            self.redis_client.set(redis_key, previous, ex=DEDUPE_KEY_TTL_SECONDS)
        else:
            self.redis_client.delete(redis_key)

    def _revoke(self, task_id: str, dedupe_key: str):
        try:
            self.celery_app.control.revoke(task_id)
            logger.info(f"Superseded job {task_id} for dedupe key {dedupe_key}")
        except Exception as e:
            # The superseded task still loses `claim` when it starts
            logger.warning(f"Failed to revoke superseded job {task_id}: {e}")

    def claim(self, dedupe_key: Optional[str], task_id: Optional[str]) -> bool:
        """
        Return True when `task_id` may run for `dedupe_key`.

        A task without a key always runs. A keyed task runs when it is the
        latest job enqueued for the key, or when the key mapping has expired.
        """
        if not dedupe_key or not task_id:
            return True
        current = _as_str(self.redis_client.get(self._dedupe_redis_key(dedupe_key)))
        if current is None or current == task_id:
            return True
        logger.info(f"Job {task_id} superseded by {current} for dedupe key {dedupe_key}; skipping")
        return False


_job_queue: Optional[JobQueue] = None


def get_job_queue() -> JobQueue:
    global _job_queue
    if _job_queue is None:
        _job_queue = JobQueue()
    return _job_queue


def set_job_queue(queue: Optional[JobQueue]):
    global _job_queue
    _job_queue = queue
