import logging
from typing import Dict, Any, Optional

from sqlalchemy import or_

from ghostwriter.core.structured_logging import structured_logger_service
from ghostwriter.db.models import ConnectedAccount, SyncStatus
from ghostwriter.integrations.platforms import SELF_AUTHORING_PLATFORMS
from ghostwriter.services.job_queue import JobType, get_job_queue
from ghostwriter.services.suggestion_lifecycle import suggestion_lifecycle
from ghostwriter.services.suggestion_service import get_suggestion_service
from ghostwriter.tasks.celery_app import celery_app
from ghostwriter.tasks.db_session_manager import get_celery_db_session
from ghostwriter.utils.timeutils import utc_now

logger = logging.getLogger(__name__)

AUTOMATED_SUGGESTION_COUNT = 3


def generation_dedupe_key(connected_account_id: int) -> str:
    return f"generate-suggestions-{connected_account_id}"


@celery_app.task(
    bind=True,
    name=JobType.GENERATE_SUGGESTIONS,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_jitter=True,
    max_retries=3,
    acks_late=True,
    reject_on_worker_lost=True,
)
def generate_suggestions(
    self,
    connected_account_id: int,
    count: Optional[int] = None,
    dedupe_key: Optional[str] = None,
) -> Dict[str, Any]:
    """Generate one batch of suggestions for an account"""
    if not get_job_queue().claim(dedupe_key, self.request.id):
        return {"success": False, "skipped": True, "reason": "superseded"}

    with structured_logger_service.correlation_context(self.request.id or f"suggest-{connected_account_id}"):
        with get_celery_db_session() as db:
            result = get_suggestion_service().generate_suggestions(db, connected_account_id, count=count)
            return result.to_dict()


@celery_app.task(bind=True, name=JobType.GENERATE_SUGGESTIONS_AUTOMATED, acks_late=True)
def generate_suggestions_automated(self) -> Dict[str, Any]:
    """Queue generation for accounts whose preferred hour is the current UTC hour"""
    hour = utc_now().hour
    queue = get_job_queue()
    dispatched = []

    with get_celery_db_session() as db:
        accounts = db.query(ConnectedAccount).filter(
            ConnectedAccount.is_active.is_(True),
            ConnectedAccount.generation_hour_utc == hour,
            or_(
                ConnectedAccount.sync_status == SyncStatus.READY,
                ConnectedAccount.platform.in_(SELF_AUTHORING_PLATFORMS),
            ),
        ).order_by(ConnectedAccount.id).all()

        for account in accounts:
            queue.enqueue(
                JobType.GENERATE_SUGGESTIONS,
                {"connected_account_id": account.id, "count": AUTOMATED_SUGGESTION_COUNT},
                dedupe_key=generation_dedupe_key(account.id),
            )
            dispatched.append(account.id)

    logger.info(f"Queued automated suggestion generation for {len(dispatched)} accounts at hour {hour}")
    return {"success": True, "hour": hour, "dispatched": dispatched}


@celery_app.task(bind=True, name=JobType.PURGE_SUGGESTIONS, acks_late=True)
def purge_expired_suggestions(self) -> Dict[str, Any]:
    """Expire overdue suggestions, then delete old expired and dismissed ones"""
    with get_celery_db_session() as db:
        expired = suggestion_lifecycle.expire_old(db)
        purged = suggestion_lifecycle.purge_expired(db)
    return {"success": True, "expired": expired, "purged": purged}
