"""
Network Sync Orchestrator

Drives one sync pass for a connected account:

    pending/ready/error --> syncing --> ready
                               \\-----> error

Accounts without a usable credential fail fast into `error` without entering
`syncing`. A rate-limit denial is not a failure: the same job is re-enqueued
with a delay under a per-account dedupe key and the account stays `syncing`.
Consecutive reschedules are capped; past the cap the account moves to
`error`. Any other exception after `syncing` marks the account `error` and is
re-raised so the Celery retry policy applies.
"""
import time
import logging
from typing import Dict, List, Optional
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from ghostwriter.core.config import get_settings, Settings
from ghostwriter.core.credentials import TokenCipher, get_token_cipher
from ghostwriter.core.exceptions import InvalidSyncTransition
from ghostwriter.core.monitoring import pipeline_metrics
from ghostwriter.core.structured_logging import structured_logger_service, PipelineStage, LogLevel
from ghostwriter.db.models import ConnectedAccount, SyncMetadata, SyncStatus
from ghostwriter.integrations.platforms import SYNCABLE_PLATFORMS
from ghostwriter.integrations.twitter_client import TwitterClient, get_twitter_client
from ghostwriter.services.extraction_service import TopicExtractor
from ghostwriter.services.job_queue import JobQueue, JobType, get_job_queue, sync_dedupe_key
from ghostwriter.services.network_persistence import NetworkPersistence, network_persistence
from ghostwriter.services.rate_limiter import RateLimitGate, RateLimitDecision, get_rate_limit_gate
from ghostwriter.utils.timeutils import utc_now

logger = logging.getLogger(__name__)

TIMELINE_RESOURCE = "timeline"
FOLLOWING_RESOURCE = "following"

VALID_SYNC_TRANSITIONS: Dict[str, List[str]] = {
    SyncStatus.PENDING: [SyncStatus.SYNCING, SyncStatus.ERROR],
    SyncStatus.SYNCING: [SyncStatus.READY, SyncStatus.ERROR],
    SyncStatus.READY: [SyncStatus.SYNCING, SyncStatus.ERROR],
    SyncStatus.ERROR: [SyncStatus.SYNCING],
}


def get_valid_transitions(current_status: str) -> List[str]:
    return VALID_SYNC_TRANSITIONS.get(current_status, [])


def transition_sync_status(account: ConnectedAccount, new_status: str) -> bool:
    """
    Move an account along the sync state machine.

    Returns False when the account is already in `new_status`.

    Raises:
        InvalidSyncTransition: the edge is not in the transition table
    """
    current = account.sync_status or SyncStatus.PENDING
    if current == new_status:
        return False
    if new_status not in get_valid_transitions(current):
        raise InvalidSyncTransition(current, new_status)
    account.sync_status = new_status
    return True


class SyncOutcome(str, Enum):
    READY = "ready"
    RESCHEDULED = "rescheduled"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class SyncResult:
    """Result of one sync pass"""
    success: bool
    outcome: SyncOutcome
    connected_account_id: int
    posts_synced: int = 0
    posts_failed: int = 0
    profiles_updated: int = 0
    retry_after_seconds: Optional[int] = None
    reschedule_job_id: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "outcome": self.outcome.value,
            "connected_account_id": self.connected_account_id,
            "posts_synced": self.posts_synced,
            "posts_failed": self.posts_failed,
            "profiles_updated": self.profiles_updated,
            "retry_after_seconds": self.retry_after_seconds,
            "reschedule_job_id": self.reschedule_job_id,
            "message": self.message,
        }


def get_sync_metadata(db: Session, account: ConnectedAccount) -> SyncMetadata:
    """Load or create the account's sync metadata row"""
    metadata = db.query(SyncMetadata).filter(SyncMetadata.connected_account_id == account.id).first()
    if metadata is None:
        metadata = SyncMetadata(
            connected_account_id=account.id,
            schema_version=SyncMetadata.CURRENT_SCHEMA_VERSION,
            reschedule_count=0,
        )
        db.add(metadata)
        db.flush()
    return metadata


class NetworkSyncService:
    """Sync orchestrator for network-class connected accounts"""

    def __init__(
        self,
        rate_limit_gate: Optional[RateLimitGate] = None,
        job_queue: Optional[JobQueue] = None,
        twitter_client: Optional[TwitterClient] = None,
        topic_extractor: Optional[TopicExtractor] = None,
        persistence: Optional[NetworkPersistence] = None,
        token_cipher: Optional[TokenCipher] = None,
        settings: Optional[Settings] = None,
    ):
        self._rate_limit_gate = rate_limit_gate
        self._job_queue = job_queue
        self._twitter_client = twitter_client
        self.topic_extractor = topic_extractor or TopicExtractor()
        self.persistence = persistence or network_persistence
        self._token_cipher = token_cipher
        self.settings = settings or get_settings()

    @property
    def rate_limit_gate(self) -> RateLimitGate:
        return self._rate_limit_gate or get_rate_limit_gate()

    @property
    def job_queue(self) -> JobQueue:
        return self._job_queue or get_job_queue()

    @property
    def twitter_client(self) -> TwitterClient:
        return self._twitter_client or get_twitter_client()

    @property
    def token_cipher(self) -> TokenCipher:
        return self._token_cipher or get_token_cipher()

    def _usable_credential(self, account: ConnectedAccount) -> Optional[str]:
        if account.platform not in SYNCABLE_PLATFORMS or not account.platform_user_id:
            return None
        return self.token_cipher.decrypt(account.access_token)

    def sync_account(self, db: Session, connected_account_id: int) -> SyncResult:
        """Run one sync pass for a connected account"""
        account = db.query(ConnectedAccount).filter(ConnectedAccount.id == connected_account_id).first()
        if account is None:
            logger.warning(f"Sync requested for unknown connected account {connected_account_id}")
            return SyncResult(False, SyncOutcome.SKIPPED, connected_account_id, message="Connected account not found")
        if not account.is_active:
            logger.info(f"Skipping sync for deactivated account {connected_account_id}")
            return SyncResult(False, SyncOutcome.SKIPPED, connected_account_id, message="Connected account is inactive")

        metadata = get_sync_metadata(db, account)

        token = self._usable_credential(account)
        if token is None:
            message = f"No usable credential for {account.platform} account; reconnect required"
            self._record_error(account, metadata, message)
            db.commit()
            pipeline_metrics.record_sync(account.platform, SyncOutcome.FAILED.value)
            structured_logger_service.log_stage(
                PipelineStage.SYNC,
                action="missing_credential",
                message=message,
                level=LogLevel.WARNING,
                connected_account_id=account.id,
                platform=account.platform,
            )
            return SyncResult(False, SyncOutcome.FAILED, account.id, message=message)

        platform = account.platform
        transition_sync_status(account, SyncStatus.SYNCING)
        metadata.sync_started_at = utc_now()
        db.commit()
        started = time.monotonic()

        try:
            decision = self.rate_limit_gate.check_rate_limit(TIMELINE_RESOURCE, account.platform_user_id)
            if not decision.allowed:
                return self._reschedule(db, account, metadata, decision)

            result = self._run_sync(db, account, metadata, token)
            duration = time.monotonic() - started
            pipeline_metrics.record_sync(platform, SyncOutcome.READY.value, duration)
            structured_logger_service.log_stage(
                PipelineStage.SYNC,
                action="sync_completed",
                message=f"Synced {result.posts_synced} posts for account {account.id}",
                connected_account_id=account.id,
                platform=platform,
                duration_ms=duration * 1000,
                metadata={"posts_failed": result.posts_failed, "profiles_updated": result.profiles_updated},
            )
            return result

        except Exception as e:
            logger.error(f"Sync failed for account {connected_account_id}: {e}")
            db.rollback()
            self._mark_error(db, connected_account_id, str(e))
            pipeline_metrics.record_sync(platform, SyncOutcome.FAILED.value, time.monotonic() - started)
            structured_logger_service.log_stage(
                PipelineStage.SYNC,
                action="sync_failed",
                message=f"Sync failed for account {connected_account_id}",
                connected_account_id=connected_account_id,
                platform=platform,
                error=e,
            )
            raise

    def _run_sync(self, db: Session, account: ConnectedAccount, metadata: SyncMetadata, token: str) -> SyncResult:
        synced_at = utc_now()
        posts = self.twitter_client.get_home_timeline(
            token, account.platform_user_id, max_results=self.settings.sync_timeline_page_size
        )
        topics = self.topic_extractor.extract_topics(posts)
        batch = self.persistence.write_timeline_page(db, account.id, account.platform, posts, topics, synced_at)

        profile_ids = set(batch.profile_ids)
        if self.settings.sync_following_enabled:
            profile_ids |= self._sync_following(db, account, token, synced_at)

        self.persistence.recompute_profile_engagement(db, sorted(profile_ids), now=synced_at)

        transition_sync_status(account, SyncStatus.READY)
        account.last_synced_at = synced_at
        metadata.last_sync_completed_at = synced_at
        metadata.reschedule_count = 0
        metadata.last_error = None
        metadata.error_at = None
        metadata.posts_synced_last_run = batch.written
        metadata.posts_failed_last_run = batch.failed
        db.commit()

        return SyncResult(
            success=True,
            outcome=SyncOutcome.READY,
            connected_account_id=account.id,
            posts_synced=batch.written,
            posts_failed=batch.failed,
            profiles_updated=len(profile_ids),
        )

    def _sync_following(self, db: Session, account: ConnectedAccount, token: str, synced_at) -> set:
        """Refresh followed profiles when the gate allows; a denial skips this step only"""
        decision = self.rate_limit_gate.check_rate_limit(FOLLOWING_RESOURCE, account.platform_user_id)
        if not decision.allowed:
            logger.info(
                f"Skipping following refresh for account {account.id}; "
                f"rate limited for {decision.retry_after_seconds}s"
            )
            return set()
        profiles = self.twitter_client.get_following(
            token, account.platform_user_id, max_results=self.settings.sync_following_page_size
        )
        return self.persistence.upsert_following(db, account.id, account.platform, profiles, synced_at).profile_ids

    def _reschedule(self, db: Session, account: ConnectedAccount, metadata: SyncMetadata, decision: RateLimitDecision) -> SyncResult:
        attempts = metadata.reschedule_count or 0
        if attempts >= self.settings.max_rate_limit_reschedules:
            message = f"Rate limit reschedule budget exhausted after {attempts} attempts"
            self._record_error(account, metadata, message)
            # The next sync request starts a new budget
            metadata.reschedule_count = 0
            db.commit()
            pipeline_metrics.record_sync(account.platform, SyncOutcome.FAILED.value)
            logger.warning(f"Account {account.id}: {message}")
            return SyncResult(False, SyncOutcome.FAILED, account.id, message=message)

        delay = max(int(decision.retry_after_seconds or 0), 1)
        job_id = self.job_queue.enqueue(
            JobType.SYNC_NETWORK,
            {"connected_account_id": account.id},
            delay=delay,
            dedupe_key=sync_dedupe_key(account.id),
        )
        metadata.reschedule_count = attempts + 1
        metadata.last_rescheduled_at = utc_now()
        db.commit()

        pipeline_metrics.record_sync(account.platform, SyncOutcome.RESCHEDULED.value)
        structured_logger_service.log_stage(
            PipelineStage.SYNC,
            action="sync_rescheduled",
            message=f"Rate limited; sync for account {account.id} rescheduled in {delay}s",
            connected_account_id=account.id,
            platform=account.platform,
            metadata={"job_id": job_id, "reschedule_count": attempts + 1},
        )
        return SyncResult(
            success=True,
            outcome=SyncOutcome.RESCHEDULED,
            connected_account_id=account.id,
            retry_after_seconds=delay,
            reschedule_job_id=job_id,
            message=f"Rate limited, retrying in {delay}s",
        )

    @staticmethod
    def _record_error(account: ConnectedAccount, metadata: SyncMetadata, message: str):
        transition_sync_status(account, SyncStatus.ERROR)
        metadata.last_error = message
        metadata.error_at = utc_now()

    def _mark_error(self, db: Session, connected_account_id: int, message: str):
        account = db.query(ConnectedAccount).filter(ConnectedAccount.id == connected_account_id).first()
        if account is None:
            return
        metadata = get_sync_metadata(db, account)
        self._record_error(account, metadata, message)
        db.commit()


_network_sync_service: Optional[NetworkSyncService] = None


def get_network_sync_service() -> NetworkSyncService:
    global _network_sync_service
    if _network_sync_service is None:
        _network_sync_service = NetworkSyncService()
    return _network_sync_service


def set_network_sync_service(service: Optional[NetworkSyncService]):
    global _network_sync_service
    _network_sync_service = service
