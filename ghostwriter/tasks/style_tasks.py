import logging
from typing import Dict, Any, Optional

from ghostwriter.core.structured_logging import structured_logger_service
from ghostwriter.services.job_queue import JobType, get_job_queue
from ghostwriter.services.style_analysis_service import get_style_analysis_service
from ghostwriter.tasks.celery_app import celery_app
from ghostwriter.tasks.db_session_manager import get_celery_db_session

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name=JobType.ANALYZE_STYLE,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_jitter=True,
    max_retries=3,
    acks_late=True,
    reject_on_worker_lost=True,
)
def analyze_style(self, connected_account_id: int, dedupe_key: Optional[str] = None) -> Dict[str, Any]:
    """Rebuild writing style, sample posts and voice from the account's own posts"""
    if not get_job_queue().claim(dedupe_key, self.request.id):
        return {"success": False, "skipped": True, "reason": "superseded"}

    with structured_logger_service.correlation_context(self.request.id or f"style-{connected_account_id}"):
        with get_celery_db_session() as db:
            result = get_style_analysis_service().analyze_account(db, connected_account_id)
            if not result.success:
                logger.info(f"Style analysis for account {connected_account_id} did not run: {result.message}")
            return result.to_dict()
