"""
Celery application configuration.

Handles scheduled subscription maintenance:
- AI usage cycle resets on billing boundaries
- Expiry of ACTIVE subscriptions whose end date has passed
"""
from celery import Celery
from celery.schedules import crontab
from celery.signals import task_prerun, task_postrun, task_failure
import logging

from motivai.core.config import settings

logger = logging.getLogger(__name__)

# Create Celery app
celery_app = Celery(
    "motivai",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "motivai.tasks.subscription_tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,
    task_soft_time_limit=540,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.task_routes = {
    "motivai.tasks.subscription_tasks.*": {"queue": "celery"},
}

celery_app.conf.beat_schedule = {
    "reset-due-usage-cycles": {
        "task": "motivai.tasks.subscription_tasks.reset_due_usage_cycles",
        "schedule": crontab(minute=5),
    },
    "expire-lapsed-subscriptions": {
        "task": "motivai.tasks.subscription_tasks.expire_lapsed_subscriptions",
        "schedule": crontab(minute=15),
    },
}


@task_prerun.connect
def task_prerun_handler(task_id, task, *args, **kwargs):
    """Handler called before task execution."""
    logger.info(f"Task starting: {task.name} (ID: {task_id})")


@task_postrun.connect
def task_postrun_handler(task_id, task, *args, retval=None, **kwargs):
    """Handler called after task execution."""
    logger.info(f"Task completed: {task.name} (ID: {task_id})")


@task_failure.connect
def task_failure_handler(task_id, exception, *args, **kwargs):
    """Handler called on task failure."""
    logger.error(f"Task failed: {task_id}, Exception: {str(exception)}")
