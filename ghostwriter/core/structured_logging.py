"""
Structured logging for pipeline stages.

Every stage of a sync or suggestion run (rate-limit check, fetch, extraction,
persistence, generation, lifecycle) emits one JSON line with the connected
account and the Celery task id as correlation id, so a whole run can be
reassembled from the log stream.
"""
import logging
import json
from typing import Dict, Any, Optional, List
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from enum import Enum
from contextlib import contextmanager

structured_logger = logging.getLogger("structured_logging")
structured_logger.setLevel(logging.INFO)


class LogLevel(Enum):
    """Log levels for structured logging"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class PipelineStage(Enum):
    """Pipeline stages for filtering and monitoring"""
    RATE_LIMIT = "rate_limit"
    SYNC = "sync"
    EXTRACTION = "extraction"
    PERSISTENCE = "persistence"
    SUGGESTION = "suggestion"
    LIFECYCLE = "lifecycle"
    STYLE_ANALYSIS = "style_analysis"
    CURATED_TOPICS = "curated_topics"


@dataclass
class StructuredLogEntry:
    """Structured log entry with standardized fields"""
    timestamp: str
    level: str
    stage: str
    service: str
    message: str
    correlation_id: Optional[str] = None
    connected_account_id: Optional[int] = None
    platform: Optional[str] = None
    action: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None
    error_details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        result = asdict(self)
        return {k: v for k, v in result.items() if v is not None}


class StructuredLogger:
    """Emits one structured line per pipeline stage with correlation tracking"""

    def __init__(self, service_name: str = "ghostwriter"):
        self.service_name = service_name
        self._correlation_stack: List[str] = []

    @property
    def correlation_id(self) -> Optional[str]:
        return self._correlation_stack[-1] if self._correlation_stack else None

    @contextmanager
    def correlation_context(self, correlation_id: str):
        """Context manager for correlation tracking"""
        self._correlation_stack.append(correlation_id)
        try:
            yield correlation_id
        finally:
            self._correlation_stack.pop()

    def _emit_log(self, entry: StructuredLogEntry):
        log_data = entry.to_dict()
        structured_logger.log(
            getattr(logging, entry.level),
            json.dumps(log_data, default=str),
            extra={"structured_data": log_data}
        )

    def log_stage(
        self,
        stage: PipelineStage,
        action: str,
        message: str,
        level: LogLevel = LogLevel.INFO,
        connected_account_id: Optional[int] = None,
        platform: Optional[str] = None,
        duration_ms: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> StructuredLogEntry:
        """Emit a structured entry for one pipeline stage and return it"""
        error_details = None
        if error is not None:
            error_details = {"type": type(error).__name__, "message": str(error)}
            if level in (LogLevel.DEBUG, LogLevel.INFO):
                level = LogLevel.ERROR

        entry = StructuredLogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level.value,
            stage=stage.value,
            service=self.service_name,
            message=message,
            correlation_id=self.correlation_id,
            connected_account_id=connected_account_id,
            platform=platform,
            action=action,
            duration_ms=round(duration_ms, 2) if duration_ms is not None else None,
            metadata=metadata,
            error_details=error_details,
        )
        self._emit_log(entry)
        return entry


structured_logger_service = StructuredLogger()
