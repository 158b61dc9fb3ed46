"""
Suggestion Lifecycle Manager

Suggestions live for a fixed TTL. Expiry is enforced twice: `list_active`
filters on `expires_at` at query time, and `expire_old` flips overdue
pending rows to `expired` in one bulk UPDATE before every generation batch.
Consumption is one-way (pending -> used, pending -> dismissed) and raises
SuggestionStateError for anything else.
"""
import logging
from typing import Any, List, Optional
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ghostwriter.core.config import get_settings
from ghostwriter.core.exceptions import SuggestionStateError
from ghostwriter.core.monitoring import pipeline_metrics
from ghostwriter.core.structured_logging import structured_logger_service, PipelineStage
from ghostwriter.db.models import PostSuggestion, SuggestionStatus
from ghostwriter.utils.timeutils import utc_now, ensure_utc

logger = logging.getLogger(__name__)


class SuggestionLifecycleManager:
    """Creation, expiry and consumption of PostSuggestion rows"""

    def __init__(self, ttl: Optional[timedelta] = None, retention: Optional[timedelta] = None):
        settings = get_settings()
        self.ttl = ttl or timedelta(hours=settings.suggestion_ttl_hours)
        self.retention = retention or timedelta(days=settings.suggestion_retention_days)

    def create_suggestion(self, db: Session, now: Optional[datetime] = None, **fields: Any) -> PostSuggestion:
        """Add a pending suggestion expiring `ttl` after `now`; the caller commits"""
        now = now or utc_now()
        suggestion = PostSuggestion(
            status=SuggestionStatus.PENDING,
            expires_at=now + self.ttl,
            **fields,
        )
        if suggestion.content is not None and suggestion.character_count is None:
            suggestion.character_count = len(suggestion.content)
        db.add(suggestion)
        db.flush()
        return suggestion

    def expire_old(self, db: Session, now: Optional[datetime] = None, connected_account_id: Optional[int] = None) -> int:
        """Flip overdue pending suggestions to expired in bulk; returns the row count"""
        now = now or utc_now()
        query = db.query(PostSuggestion).filter(
            PostSuggestion.status == SuggestionStatus.PENDING,
            PostSuggestion.expires_at <= now,
        )
        if connected_account_id is not None:
            query = query.filter(PostSuggestion.connected_account_id == connected_account_id)

        expired = query.update(
            {"status": SuggestionStatus.EXPIRED, "expired_at": now},
            synchronize_session=False,
        )
        if expired:
            pipeline_metrics.record_expired(expired)
            structured_logger_service.log_stage(
                PipelineStage.LIFECYCLE,
                action="expire_old",
                message=f"Expired {expired} suggestions",
                connected_account_id=connected_account_id,
                metadata={"expired": expired},
            )
        return expired

    def list_active(self, db: Session, connected_account_id: int, now: Optional[datetime] = None, limit: Optional[int] = None) -> List[PostSuggestion]:
        """Pending suggestions not yet past their TTL, newest first"""
        now = now or utc_now()
        query = db.query(PostSuggestion).filter(
            PostSuggestion.connected_account_id == connected_account_id,
            PostSuggestion.status == SuggestionStatus.PENDING,
            PostSuggestion.expires_at > now,
        ).order_by(PostSuggestion.created_at.desc(), PostSuggestion.id.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def _consume(self, db: Session, suggestion_id: int, new_status: str, timestamp_field: str, now: Optional[datetime]) -> PostSuggestion:
        now = now or utc_now()
        suggestion = db.query(PostSuggestion).filter(PostSuggestion.id == suggestion_id).first()
        if suggestion is None:
            raise ValueError(f"Suggestion {suggestion_id} not found")

        if suggestion.status != SuggestionStatus.PENDING:
            raise SuggestionStateError(suggestion_id, suggestion.status)
        if ensure_utc(suggestion.expires_at) <= now:
            raise SuggestionStateError(
                suggestion_id,
                SuggestionStatus.EXPIRED,
                reason=f"Suggestion {suggestion_id} expired at {suggestion.expires_at}",
            )

        suggestion.status = new_status
        setattr(suggestion, timestamp_field, now)
        db.flush()
        logger.info(f"Suggestion {suggestion_id} marked {new_status}")
        return suggestion

    def mark_used(self, db: Session, suggestion_id: int, now: Optional[datetime] = None) -> PostSuggestion:
        return self._consume(db, suggestion_id, SuggestionStatus.USED, "used_at", now)

    def mark_dismissed(self, db: Session, suggestion_id: int, now: Optional[datetime] = None) -> PostSuggestion:
        return self._consume(db, suggestion_id, SuggestionStatus.DISMISSED, "dismissed_at", now)

    def purge_expired(self, db: Session, now: Optional[datetime] = None) -> int:
        """Hard-delete expired and dismissed suggestions older than the retention window"""
        now = now or utc_now()
        cutoff = now - self.retention
        deleted = db.query(PostSuggestion).filter(
            or_(
                PostSuggestion.status == SuggestionStatus.EXPIRED,
                PostSuggestion.status == SuggestionStatus.DISMISSED,
            ),
            PostSuggestion.expires_at <= cutoff,
        ).delete(synchronize_session=False)
        if deleted:
            logger.info(f"Purged {deleted} suggestions older than {cutoff.isoformat()}")
        return deleted


suggestion_lifecycle = SuggestionLifecycleManager()
