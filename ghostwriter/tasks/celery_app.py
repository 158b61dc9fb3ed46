import os
from celery import Celery
from celery.signals import setup_logging
from ghostwriter.core.config import get_settings
from ghostwriter.core.logging import setup_worker_logging

settings = get_settings()

celery_app = Celery(
    "ghostwriter",
    broker=settings.get_celery_broker_url(),
    backend=settings.get_celery_result_backend(),
    include=[
        "ghostwriter.tasks.sync_tasks",
        "ghostwriter.tasks.style_tasks",
        "ghostwriter.tasks.suggestion_tasks",
        "ghostwriter.tasks.topic_tasks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=1800,  # 30 minutes
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,  # 8 minutes

    worker_concurrency=int(os.getenv('CELERY_WORKER_CONCURRENCY', '4')),
    worker_prefetch_multiplier=int(os.getenv('CELERY_WORKER_PREFETCH', '1')),
    worker_max_tasks_per_child=int(os.getenv('CELERY_MAX_TASKS_PER_CHILD', '100')),
    worker_pool=os.getenv('CELERY_WORKER_POOL', 'prefork'),

    # Acknowledge only after completion so a lost worker re-delivers the job
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Must exceed the longest rate-limit countdown or delayed jobs are re-delivered early
    broker_transport_options={
        'visibility_timeout': 3600,
    },

    task_routes={
        'ghostwriter.tasks.sync_tasks.*': {'queue': 'ghost_sync'},
        'ghostwriter.tasks.style_tasks.*': {'queue': 'ghost_sync'},
        'ghostwriter.tasks.suggestion_tasks.purge_expired_suggestions': {'queue': 'ghost_maintenance'},
        'ghostwriter.tasks.suggestion_tasks.*': {'queue': 'ghost_suggestions'},
        'ghostwriter.tasks.topic_tasks.*': {'queue': 'ghost_topics'},
    },

    task_default_queue='default',
    task_create_missing_queues=True,
)

celery_app.conf.task_queues = {
    name: {
        'exchange': name,
        'routing_key': name,
        'durable': True,
        'auto_delete': False,
    }
    for name in ('default', 'ghost_sync', 'ghost_suggestions', 'ghost_topics', 'ghost_maintenance')
}

celery_app.conf.beat_schedule = {
    # Re-sync accounts whose network data is older than STALE_SYNC_HOURS
    'dispatch-stale-syncs': {
        'task': 'ghostwriter.tasks.sync_tasks.dispatch_stale_syncs',
        'schedule': 60.0 * 60.0,  # Hourly
        'options': {'queue': 'ghost_sync', 'expires': 1800},
    },

    # Accounts whose generation_hour_utc matches the current hour
    'generate-suggestions-automated': {
        'task': 'ghostwriter.tasks.suggestion_tasks.generate_suggestions_automated',
        'schedule': 60.0 * 60.0,  # Hourly
        'options': {'queue': 'ghost_suggestions', 'expires': 1800},
    },

    'dispatch-curated-topics': {
        'task': 'ghostwriter.tasks.topic_tasks.dispatch_curated_topics',
        'schedule': 60.0 * 30,  # Every 30 minutes
        'options': {'queue': 'ghost_topics', 'expires': 900},
    },

    'purge-expired-suggestions': {
        'task': 'ghostwriter.tasks.suggestion_tasks.purge_expired_suggestions',
        'schedule': 60.0 * 60.0 * 24,  # Daily
        'options': {'queue': 'ghost_maintenance', 'expires': 7200},
    },
}


@setup_logging.connect
def configure_worker_logging(**kwargs):
    """Workers log through ghostwriter.core.logging instead of Celery's default handlers"""
    setup_worker_logging()
