"""
Logging configuration for ghostwriter processes.

Workers log JSON lines in production and a readable single-line format
elsewhere. Records emitted inside a Celery task carry its id and name, so the
plain `logger.info(...)` calls in services can be joined with the structured
pipeline-stage records for the same run.
"""
import logging
import json
from datetime import datetime, timezone
from typing import Optional

from celery import current_task

from ghostwriter.core.config import Settings, get_settings

PIPELINE_FIELDS = ('connected_account_id', 'curated_topic_id', 'task_id', 'task_name', 'job_type', 'duration_ms')

QUIET_LOGGERS = ('urllib3', 'requests', 'openai', 'httpx', 'sqlalchemy.engine', 'alembic')


class TaskContextFilter(logging.Filter):
    """Stamps records with the id and name of the Celery task being executed"""

    def filter(self, record):
        task = current_task
        request = getattr(task, 'request', None) if task else None
        if request is not None and getattr(request, 'id', None):
            if not hasattr(record, 'task_id'):
                record.task_id = request.id
            if not hasattr(record, 'task_name'):
                record.task_name = task.name
        return True


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service_name: Optional[str] = None):
        super().__init__()
        self.service_name = service_name

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }
        if self.service_name:
            log_entry['service'] = self.service_name

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for field in PIPELINE_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        return json.dumps(log_entry, default=str)


def setup_logging(settings: Optional[Settings] = None, service_name: str = 'ghostwriter', json_output: Optional[bool] = None):
    """
    Configure the root logger from settings.

    Args:
        settings: Settings to read `log_level` and `environment` from
        service_name: Name added to every JSON record
        json_output: Force JSON (True) or readable (False) output; defaults to
            JSON in production
    """
    settings = settings or get_settings()
    numeric_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if json_output is None:
        json_output = settings.is_production

    if json_output:
        formatter = JsonFormatter(service_name)
    else:
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler = logging.StreamHandler()
    handler.setLevel(numeric_level)
    handler.setFormatter(formatter)
    handler.addFilter(TaskContextFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger(service_name)


def setup_worker_logging():
    """Logging for Celery worker processes"""
    return setup_logging(service_name='ghostwriter-worker')
