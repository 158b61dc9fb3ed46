import logging
from typing import Dict, Any, Optional

from ghostwriter.core.structured_logging import structured_logger_service
from ghostwriter.services.curated_topic_service import get_curated_topic_service
from ghostwriter.services.job_queue import JobType, get_job_queue
from ghostwriter.tasks.celery_app import celery_app
from ghostwriter.tasks.db_session_manager import get_celery_db_session

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name=JobType.DISPATCH_CURATED_TOPICS, acks_late=True)
def dispatch_curated_topics(self) -> Dict[str, Any]:
    with get_celery_db_session() as db:
        return get_curated_topic_service().dispatch_curated_topics(db).to_dict()


@celery_app.task(
    bind=True,
    name=JobType.SYNC_CURATED_TOPIC,
    autoretry_for=(Exception,),
    retry_backoff=60,
    retry_jitter=True,
    max_retries=3,
    acks_late=True,
    reject_on_worker_lost=True,
)
def sync_curated_topic(self, curated_topic_id: int, dedupe_key: Optional[str] = None) -> Dict[str, Any]:
    """Fetch a curated topic's list and queue its digest"""
    if not get_job_queue().claim(dedupe_key, self.request.id):
        return {"success": False, "skipped": True, "reason": "superseded"}

    with structured_logger_service.correlation_context(self.request.id or f"topic-{curated_topic_id}"):
        with get_celery_db_session() as db:
            return get_curated_topic_service().sync_curated_topic(db, curated_topic_id).to_dict()


@celery_app.task(
    bind=True,
    name=JobType.DIGEST_CURATED_TOPIC,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_jitter=True,
    max_retries=3,
    acks_late=True,
)
def digest_curated_topic(self, curated_topic_id: int, dedupe_key: Optional[str] = None) -> Dict[str, Any]:
    if not get_job_queue().claim(dedupe_key, self.request.id):
        return {"success": False, "skipped": True, "reason": "superseded"}

    with get_celery_db_session() as db:
        return get_curated_topic_service().digest_curated_topic(db, curated_topic_id).to_dict()
