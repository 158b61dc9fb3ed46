"""
Network sync tasks.

`sync_network` is the only entry point that moves an account through the
sync state machine. Rescheduled runs share the account's dedupe key, so a
newer job supersedes an older pending one.
"""
import logging
from datetime import timedelta
from typing import Dict, Any, Optional

from sqlalchemy import or_, and_

from ghostwriter.core.config import get_settings
from ghostwriter.core.structured_logging import structured_logger_service
from ghostwriter.db.models import ConnectedAccount, SyncMetadata, SyncStatus
from ghostwriter.integrations.platforms import SYNCABLE_PLATFORMS
from ghostwriter.services.job_queue import JobType, get_job_queue, sync_dedupe_key
from ghostwriter.services.network_sync_service import get_network_sync_service
from ghostwriter.tasks.celery_app import celery_app
from ghostwriter.tasks.db_session_manager import get_celery_db_session
from ghostwriter.utils.timeutils import utc_now

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name=JobType.SYNC_NETWORK,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_jitter=True,
    max_retries=3,
    acks_late=True,
    reject_on_worker_lost=True,
)
def sync_network(self, connected_account_id: int, dedupe_key: Optional[str] = None) -> Dict[str, Any]:
    """Sync one connected account's network posts and profiles"""
    if not get_job_queue().claim(dedupe_key, self.request.id):
        return {"success": False, "skipped": True, "reason": "superseded"}

    with structured_logger_service.correlation_context(self.request.id or f"sync-{connected_account_id}"):
        with get_celery_db_session() as db:
            result = get_network_sync_service().sync_account(db, connected_account_id)
            return result.to_dict()


def find_stale_accounts(db, now=None):
    """Active syncable accounts never synced, or last synced before the stale cutoff"""
    now = now or utc_now()
    cutoff = now - timedelta(hours=get_settings().stale_sync_hours)
    return db.query(ConnectedAccount).outerjoin(
        SyncMetadata, SyncMetadata.connected_account_id == ConnectedAccount.id
    ).filter(
        ConnectedAccount.is_active.is_(True),
        ConnectedAccount.platform.in_(SYNCABLE_PLATFORMS),
        or_(ConnectedAccount.last_synced_at.is_(None), ConnectedAccount.last_synced_at < cutoff),
        or_(
            ConnectedAccount.sync_status != SyncStatus.SYNCING,
            # A syncing account whose run started before the cutoff is stuck
            and_(SyncMetadata.sync_started_at.isnot(None), SyncMetadata.sync_started_at < cutoff),
        ),
    ).order_by(ConnectedAccount.id).all()


@celery_app.task(bind=True, name=JobType.DISPATCH_STALE_SYNCS, acks_late=True)
def dispatch_stale_syncs(self) -> Dict[str, Any]:
    """Queue a sync for every account whose network data has gone stale"""
    queue = get_job_queue()
    dispatched = []
    with get_celery_db_session() as db:
        for account in find_stale_accounts(db):
            queue.enqueue(
                JobType.SYNC_NETWORK,
                {"connected_account_id": account.id},
                dedupe_key=sync_dedupe_key(account.id),
            )
            dispatched.append(account.id)

    logger.info(f"Dispatched {len(dispatched)} stale network syncs")
    return {"success": True, "dispatched": dispatched}
