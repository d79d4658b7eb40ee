"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend.

Beat schedule:
    - purge_expired_verification_tokens: hourly
    - report_orphan_tenants: daily
"""

from celery import Celery
from celery.schedules import crontab

from app.core.config import get_settings

# Redis connection URL
REDIS_URL = get_settings().redis_url

# Create Celery app
celery_app = Celery(
    'tenant_worker',
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=['app.tasks']  # Module containing our tasks
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Worker settings
    worker_prefetch_multiplier=1,  # Process one task at a time
    worker_concurrency=4,  # Number of worker processes

    # Result settings
    result_expires=3600,  # Results expire after 1 hour

    # Task execution settings
    task_acks_late=True,  # Acknowledge task after completion
    task_reject_on_worker_lost=True,  # Requeue task if worker dies

    broker_connection_retry_on_startup=True,

    beat_schedule={
        'purge-verification-tokens': {
            'task': 'app.tasks.purge_expired_verification_tokens',
            'schedule': crontab(minute=0),
        },
        'report-orphan-tenants': {
            'task': 'app.tasks.report_orphan_tenants',
            'schedule': crontab(minute=30, hour=3),
        },
    },
)


if __name__ == '__main__':
    celery_app.start()
