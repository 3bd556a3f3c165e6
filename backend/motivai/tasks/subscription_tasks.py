"""
Celery tasks for subscription maintenance.

Tasks:
- reset_due_usage_cycles: Start a new AI usage cycle for subscriptions past their reset date
- expire_lapsed_subscriptions: Expire ACTIVE subscriptions whose end date has passed
"""
from datetime import datetime
import logging

from motivai.core.celery_app import celery_app
from motivai.db.base import SessionLocal
from motivai.services.subscription import SubscriptionManager

logger = logging.getLogger(__name__)


@celery_app.task
def reset_due_usage_cycles():
    """
    Hourly task resetting AI usage counters whose cycle boundary has passed.

    Requests already reset lazily through check_ai_usage_limit are skipped
    since their reset date has moved forward.
    """
    db = SessionLocal()

    try:
        manager = SubscriptionManager(db)
        reset_count = manager.reset_due_usage_cycles(datetime.utcnow())

        logger.info(f"[subscriptions] Usage cycle reset complete: reset={reset_count}")
        return {"reset": reset_count}

    except Exception as e:
        logger.error(f"[subscriptions] Usage cycle reset task failed: {e}", exc_info=True)
        raise

    finally:
        db.close()


@celery_app.task
def expire_lapsed_subscriptions():
    """
    Hourly task expiring ACTIVE subscriptions whose end date is in the past.

    Subscriptions cancelled at period end land here once their period is over.
    """
    db = SessionLocal()

    try:
        manager = SubscriptionManager(db)
        expired_count = manager.expire_lapsed_subscriptions(datetime.utcnow())

        logger.info(f"[subscriptions] Expiry sweep complete: expired={expired_count}")
        return {"expired": expired_count}

    except Exception as e:
        logger.error(f"[subscriptions] Expiry sweep task failed: {e}", exc_info=True)
        raise

    finally:
        db.close()
