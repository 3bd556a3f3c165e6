"""
Subscription lifecycle and AI quota management.

Handles:
- Derived status (active, expired, remaining days, AI quota left)
- AI usage recording with a per-subscription compare-and-set
- Usage cycle resets on billing boundaries
- Plan changes, cancellation, renewal and reactivation
- Audit trail of lifecycle events and listener fan-out
"""
import math
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.orm import Session

from motivai.core import plans
from motivai.core.config import settings
from motivai.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    QuotaExceeded,
    SubscriptionValidationError,
    ValidationError,
)
from motivai.models import Subscription, SubscriptionEvent, SubscriptionStatus, User
from motivai.schemas import (
    AIUsageStatus,
    CancelledPayload,
    CreatedPayload,
    ExpiredPayload,
    LetterLimitStatus,
    RenewedPayload,
    SubscriptionCreate,
    SubscriptionDetail,
    SubscriptionEventRecord,
    TrialEndedPayload,
    TrialStartedPayload,
    UpdatedPayload,
    ValidationIssue,
)
import logging

logger = logging.getLogger(__name__)

SubscriptionListener = Callable[[SubscriptionEventRecord], None]

REQUIRED_FIELDS = ("user_id", "plan_id", "plan", "status")


def _field(data: Union[Dict[str, Any], Any], name: str) -> Any:
    if isinstance(data, dict):
        return data.get(name)
    return getattr(data, name, None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class SubscriptionManager:
    """
    Owns the lifecycle and invariants of user subscriptions.

    Query methods (``is_active``, ``is_expired``, ``remaining_days``,
    ``can_use_ai``) work on any subscription instance. Mutating methods write
    through the bound session and emit a ``SubscriptionEvent`` per transition;
    events are handed to registered listeners once committed.
    """

    def __init__(
        self,
        db: Optional[Session] = None,
        listeners: Optional[List[SubscriptionListener]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize subscription manager.

        Args:
            db: Database session (optional for pure queries)
            listeners: Callables receiving each committed lifecycle event
            clock: Source of the current (naive UTC) time
        """
        self.db = db
        self.clock = clock
        self._listeners: List[SubscriptionListener] = list(listeners or [])
        self._pending_events: List[SubscriptionEvent] = []

    # ------------------------------------------------------------------
    # Listeners and events
    # ------------------------------------------------------------------

    def add_listener(self, listener: SubscriptionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SubscriptionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, subscription: Subscription, payload: BaseModel, source: str = "system") -> None:
        event = SubscriptionEvent(
            id=str(uuid.uuid4()),
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            event_type=payload.event_type,
            payload=payload.model_dump(mode="json"),
            source=source,
            created_at=self.clock(),
        )
        self._require_db().add(event)
        self._pending_events.append(event)

    def _commit(self) -> None:
        db = self._require_db()
        db.commit()

        events, self._pending_events = self._pending_events, []
        for event in events:
            record = SubscriptionEventRecord.model_validate(event)
            for listener in list(self._listeners):
                try:
                    listener(record)
                except Exception as e:
                    logger.error(
                        f"Subscription listener failed for event {record.event_type} "
                        f"({record.subscription_id}): {str(e)}",
                        exc_info=True,
                    )

    def _require_db(self) -> Session:
        if self.db is None:
            raise RuntimeError("SubscriptionManager is not bound to a database session")
        return self.db

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def _expire_lapsed_trial(self, subscription: Subscription, now: datetime) -> None:
        """Lazily move an unpaid trial past its end date to EXPIRED."""
        if subscription.status != SubscriptionStatus.TRIAL:
            return
        if not subscription.trial_end_date or now <= subscription.trial_end_date:
            return
        if subscription.payment_id:
            return

        subscription.status = SubscriptionStatus.EXPIRED
        subscription.updated_at = now
        logger.info(f"Trial ended without payment, subscription {subscription.id} expired")

        if self.db is not None and subscription.id is not None:
            self._emit(subscription, TrialEndedPayload(converted=False))
            self._commit()

    def is_active(self, subscription: Subscription, now: Optional[datetime] = None) -> bool:
        """
        Status-only activity check.

        ACTIVE and TRIAL are active; everything else (CANCELLED included, even
        with ``cancel_at_period_end`` and a future end date) is not.
        """
        self._expire_lapsed_trial(subscription, now or self.clock())
        return subscription.status in SubscriptionStatus.USABLE

    def is_expired(self, subscription: Subscription, now: Optional[datetime] = None) -> bool:
        """True iff the subscription has an end date and it has passed."""
        now = now or self.clock()
        self._expire_lapsed_trial(subscription, now)
        if subscription.end_date is None:
            return False
        return now > subscription.end_date

    def remaining_days(self, subscription: Subscription, now: Optional[datetime] = None) -> Optional[int]:
        """Whole days left until the end date (rounded up), None when perpetual."""
        if subscription.end_date is None:
            return None
        now = now or self.clock()
        seconds = (subscription.end_date - now).total_seconds()
        return math.ceil(seconds / 86400)

    def can_use_ai(self, subscription: Subscription) -> bool:
        limit = plans.ai_limit(subscription.plan)
        if plans.is_unlimited(limit):
            return True
        return (subscription.ai_usage_count or 0) < limit

    def ai_limit_remaining(self, subscription: Subscription) -> Optional[int]:
        limit = plans.ai_limit(subscription.plan)
        if plans.is_unlimited(limit):
            return None
        return max(0, limit - (subscription.ai_usage_count or 0))

    def derived_fields(self, subscription: Subscription, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or self.clock()
        return {
            "remaining_days": self.remaining_days(subscription, now),
            "is_expired": self.is_expired(subscription, now),
            "can_use_ai": self.can_use_ai(subscription),
            "ai_limit_remaining": self.ai_limit_remaining(subscription),
        }

    def to_detail(self, subscription: Subscription, now: Optional[datetime] = None) -> SubscriptionDetail:
        detail = SubscriptionDetail.model_validate(subscription)
        return detail.model_copy(update=self.derived_fields(subscription, now))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, data: Union[Dict[str, Any], Any]) -> List[ValidationIssue]:
        """
        Check required fields and cross-field invariants.

        Pure: never mutates ``data``.

        Args:
            data: Partial subscription (dict or object)

        Returns:
            List of issues, empty when valid
        """
        issues: List[ValidationIssue] = []

        for name in REQUIRED_FIELDS:
            value = _field(data, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                issues.append(ValidationIssue(field=name, message=f"{name} est requis"))

        status = _field(data, "status")
        if status and status not in SubscriptionStatus.ALL:
            issues.append(ValidationIssue(field="status", message=f"status invalide: {status}"))

        start_date = _field(data, "start_date")
        end_date = _field(data, "end_date")
        if start_date and end_date and end_date <= start_date:
            issues.append(
                ValidationIssue(
                    field="end_date",
                    message="La date de fin doit être postérieure à la date de début",
                )
            )

        ai_usage_count = _field(data, "ai_usage_count")
        if ai_usage_count is not None and ai_usage_count < 0:
            issues.append(
                ValidationIssue(
                    field="ai_usage_count",
                    message="L'utilisation IA ne peut pas être négative",
                )
            )

        return issues

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_subscription(self, subscription_id: str, user_id: Optional[str] = None) -> Subscription:
        """
        Fetch a subscription, optionally checking ownership.

        Raises:
            NotFoundError: Unknown subscription
            ForbiddenError: Subscription belongs to another user
        """
        subscription = self._require_db().get(Subscription, subscription_id)
        if not subscription:
            raise NotFoundError("Abonnement non trouvé")

        if user_id and subscription.user_id != user_id:
            raise ForbiddenError("Accès non autorisé à cet abonnement")

        return subscription

    def get_active_subscription(self, user_id: str, now: Optional[datetime] = None) -> Optional[Subscription]:
        """Most recent ACTIVE/TRIAL subscription of a user, if still active."""
        subscription = (
            self._require_db()
            .query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.status.in_(SubscriptionStatus.USABLE),
            )
            .order_by(Subscription.created_at.desc())
            .first()
        )

        if subscription and not self.is_active(subscription, now):
            return None

        return subscription

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_subscription(
        self,
        user_id: str,
        data: SubscriptionCreate,
        source: str = "user",
    ) -> Subscription:
        """
        Create a subscription after a successful payment or trial start.

        Any ACTIVE subscription of the user is cancelled immediately first.

        Raises:
            SubscriptionValidationError: Invalid data (nothing is written)
        """
        now = self.clock()
        start_date = data.start_date or now
        end_date = data.end_date
        if end_date is None and data.billing_interval != "lifetime":
            end_date = plans.next_billing_date(start_date, data.billing_interval)

        issues = self.validate(
            {**data.model_dump(), "user_id": user_id, "start_date": start_date, "end_date": end_date}
        )
        if issues:
            raise SubscriptionValidationError(issues)

        db = self._require_db()

        existing = self.get_active_subscription(user_id, now)
        if existing and existing.status == SubscriptionStatus.ACTIVE:
            self.cancel(existing, reason="replaced", at_period_end=False, source="system")
            logger.info(f"Previous subscription {existing.id} cancelled for user {user_id}")

        subscription = Subscription(
            id=str(uuid.uuid4()),
            user_id=user_id,
            plan_id=data.plan_id,
            plan=data.plan,
            status=data.status,
            billing_interval=data.billing_interval,
            start_date=start_date,
            end_date=end_date,
            payment_id=data.payment_id,
            paypal_subscription_id=data.paypal_subscription_id,
            paypal_order_id=data.paypal_order_id,
            paypal_plan_id=data.paypal_plan_id,
            trial_count=0,
            ai_usage_count=0,
            ai_usage_reset=plans.first_day_of_next_month(now),
            ai_usage_total_all_time=0,
            is_auto_renew=data.is_auto_renew,
            cancel_at_period_end=False,
            current_period_start=start_date,
            current_period_end=end_date,
            billing_cycle_anchor=start_date,
            source=data.source,
            promocode=data.promocode,
            discount=data.discount.model_dump(mode="json") if data.discount else None,
            plan_history=[],
            version=1,
            created_at=now,
            updated_at=now,
        )

        if data.status == SubscriptionStatus.TRIAL:
            trial_days = plans.get_plan(data.plan)["trial_days"]
            subscription.trial_count = 1
            subscription.trial_start_date = start_date
            subscription.trial_end_date = data.trial_end_date or start_date + timedelta(days=trial_days)

        db.add(subscription)

        user = db.get(User, user_id)
        if user:
            user.subscription_id = subscription.id

        if data.status == SubscriptionStatus.TRIAL:
            self._emit(
                subscription,
                TrialStartedPayload(plan=data.plan, trial_end_date=subscription.trial_end_date),
                source,
            )
        else:
            self._emit(
                subscription,
                CreatedPayload(plan=data.plan, status=data.status, interval=data.billing_interval),
                source,
            )
        self._commit()

        logger.info(f"Subscription created for user {user_id}: {subscription.id} ({data.plan})")
        return subscription

    def record_ai_usage(self, subscription: Subscription) -> Subscription:
        """
        Count one AI generation against the subscription's quota.

        The increment is a compare-and-set on ``version`` so concurrent
        recordings for the same subscription cannot lose updates; on conflict
        the row is reloaded and the quota re-checked.

        Raises:
            QuotaExceeded: Plan limit reached (counter unchanged)
            ConflictError: Lost the race on every attempt
        """
        db = self._require_db()

        for attempt in range(1, settings.ai_usage_max_write_attempts + 1):
            if not self.can_use_ai(subscription):
                limit = plans.ai_limit(subscription.plan)
                logger.warning(
                    f"AI quota exceeded for subscription {subscription.id}: "
                    f"{subscription.ai_usage_count}/{limit}"
                )
                raise QuotaExceeded("ai", subscription.ai_usage_count or 0, limit)

            result = db.execute(
                update(Subscription)
                .where(
                    Subscription.id == subscription.id,
                    Subscription.version == subscription.version,
                )
                .values(
                    ai_usage_count=Subscription.ai_usage_count + 1,
                    ai_usage_total_all_time=Subscription.ai_usage_total_all_time + 1,
                    version=Subscription.version + 1,
                    updated_at=self.clock(),
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 1:
                self._commit()
                db.refresh(subscription)
                logger.debug(
                    f"AI usage recorded for subscription {subscription.id}: "
                    f"{subscription.ai_usage_count}"
                )
                return subscription

            logger.warning(
                f"Concurrent AI usage write on subscription {subscription.id} "
                f"(attempt {attempt}), reloading"
            )
            db.refresh(subscription)

        raise ConflictError(f"Impossible d'enregistrer l'utilisation IA pour {subscription.id}")

    def reset_usage_cycle(self, subscription: Subscription, now: Optional[datetime] = None) -> Subscription:
        """
        Start a new AI usage cycle.

        Zeroes the counter and moves ``ai_usage_reset`` to the next billing
        boundary strictly after both the previous boundary and ``now``. Not a
        plan change: no history entry, no event.
        """
        now = now or self.clock()
        previous = subscription.ai_usage_reset
        interval = subscription.billing_interval

        boundary = plans.next_billing_date(previous or now, interval)
        while boundary <= now or (previous is not None and boundary <= previous):
            boundary = plans.next_billing_date(boundary, interval)

        subscription.ai_usage_count = 0
        subscription.ai_usage_reset = boundary
        subscription.version = (subscription.version or 0) + 1
        subscription.updated_at = now

        if self.db is not None:
            self._commit()

        logger.info(f"AI usage reset for subscription {subscription.id}, next reset {boundary.isoformat()}")
        return subscription

    def change_plan(
        self,
        subscription: Subscription,
        new_plan: str,
        reason: Optional[str] = None,
        source: str = "user",
    ) -> Subscription:
        """
        Move a subscription to another plan.

        Closes the current plan period in ``plan_history`` and emits an
        ``updated`` event tagged upgrade or downgrade. AI usage already
        granted in the current cycle is kept.
        """
        if new_plan not in plans.PLAN_CATALOG:
            raise ValidationError(f"Plan inconnu: {new_plan}")
        if plans.resolve_plan(new_plan) == plans.resolve_plan(subscription.plan):
            raise ValidationError(f"L'abonnement est déjà sur le plan {new_plan}")

        now = self.clock()
        old_plan = subscription.plan
        history = list(subscription.plan_history or [])
        period_start = history[-1]["end_date"] if history else _iso(subscription.start_date)

        history.append({
            "plan_id": subscription.plan_id,
            "plan": old_plan,
            "start_date": period_start,
            "end_date": _iso(now),
            "reason": reason,
        })

        subscription.plan_history = history
        subscription.plan = new_plan
        subscription.plan_id = new_plan
        subscription.updated_at = now

        change_type = "upgrade" if plans.plan_rank(new_plan) > plans.plan_rank(old_plan) else "downgrade"

        self._emit(
            subscription,
            UpdatedPayload(change_type=change_type, from_plan=old_plan, to_plan=new_plan, reason=reason),
            source,
        )
        self._commit()

        logger.info(f"Subscription {subscription.id} {change_type}: {old_plan} -> {new_plan}")
        return subscription

    def cancel(
        self,
        subscription: Subscription,
        reason: Optional[str] = None,
        at_period_end: bool = True,
        source: str = "user",
    ) -> Subscription:
        """
        Cancel a subscription.

        At period end the subscription stays usable until ``end_date``;
        otherwise it becomes CANCELLED right away.

        Raises:
            ValidationError: Already cancelled
        """
        if subscription.status == SubscriptionStatus.CANCELLED:
            raise ValidationError("Abonnement déjà annulé")

        now = self.clock()
        subscription.cancel_at_period_end = at_period_end
        subscription.cancel_reason = reason
        subscription.is_auto_renew = False
        subscription.updated_at = now

        if not at_period_end:
            subscription.status = SubscriptionStatus.CANCELLED
            subscription.cancelled_at = now
            subscription.current_period_end = now
            if subscription.start_date < now and (subscription.end_date is None or subscription.end_date > now):
                subscription.end_date = now

        self._emit(subscription, CancelledPayload(reason=reason, at_period_end=at_period_end), source)
        self._commit()

        logger.info(
            f"Subscription {subscription.id} cancelled "
            f"({'at period end' if at_period_end else 'immediately'}), reason: {reason}"
        )
        return subscription

    def renew(
        self,
        subscription: Subscription,
        new_end_date: Optional[datetime] = None,
        source: str = "webhook",
    ) -> Subscription:
        """Extend a subscription by one billing period (or to ``new_end_date``)."""
        now = self.clock()
        period_start = subscription.current_period_end or now

        if new_end_date is None and subscription.billing_interval != "lifetime":
            new_end_date = plans.next_billing_date(period_start, subscription.billing_interval)

        subscription.status = SubscriptionStatus.ACTIVE
        subscription.end_date = new_end_date
        subscription.current_period_start = period_start
        subscription.current_period_end = new_end_date
        subscription.cancel_at_period_end = False
        subscription.is_auto_renew = True
        subscription.updated_at = now

        self._emit(subscription, RenewedPayload(end_date=new_end_date), source)
        self._commit()

        logger.info(f"Subscription {subscription.id} renewed until {_iso(new_end_date)}")
        return subscription

    def reactivate(
        self,
        subscription: Subscription,
        reason: Optional[str] = None,
        source: str = "user",
    ) -> Subscription:
        """
        Bring an EXPIRED or CANCELLED subscription back to ACTIVE.

        The terminated period is recorded in ``plan_history``.

        Raises:
            ValidationError: Subscription is not in a terminal state
        """
        if subscription.status not in SubscriptionStatus.TERMINAL:
            raise ValidationError(f"Impossible de réactiver un abonnement au statut {subscription.status}")

        now = self.clock()
        history = list(subscription.plan_history or [])
        period_start = history[-1]["end_date"] if history else _iso(subscription.start_date)
        ended_at = subscription.cancelled_at or subscription.end_date or now

        history.append({
            "plan_id": subscription.plan_id,
            "plan": subscription.plan,
            "start_date": period_start,
            "end_date": _iso(min(ended_at, now)),
            "reason": reason or f"reactivated after {subscription.status}",
        })

        new_end_date = None
        if subscription.billing_interval != "lifetime":
            new_end_date = plans.next_billing_date(now, subscription.billing_interval)

        subscription.plan_history = history
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.cancel_at_period_end = False
        subscription.cancel_reason = None
        subscription.cancelled_at = None
        subscription.is_auto_renew = True
        subscription.end_date = new_end_date
        subscription.current_period_start = now
        subscription.current_period_end = new_end_date
        subscription.updated_at = now

        self._emit(subscription, RenewedPayload(end_date=new_end_date, reactivated=True, reason=reason), source)
        self._commit()

        logger.info(f"Subscription {subscription.id} reactivated")
        return subscription

    def expire(self, subscription: Subscription, reason: str = "end_date_passed") -> Subscription:
        """Mark a subscription as EXPIRED."""
        subscription.status = SubscriptionStatus.EXPIRED
        subscription.updated_at = self.clock()

        self._emit(subscription, ExpiredPayload(reason=reason))
        self._commit()

        logger.info(f"Subscription {subscription.id} marked as expired")
        return subscription

    # ------------------------------------------------------------------
    # Quota checks
    # ------------------------------------------------------------------

    def check_ai_usage_limit(self, user_id: str, now: Optional[datetime] = None) -> AIUsageStatus:
        """
        AI quota status for a user; starts a new cycle first when one is due.
        """
        now = now or self.clock()
        subscription = self.get_active_subscription(user_id, now)

        if not subscription:
            return AIUsageStatus(
                can_use=False,
                current_usage=0,
                limit=plans.ai_limit("free"),
                remaining=plans.ai_limit("free"),
                reset_date=None,
                plan="free",
            )

        if subscription.ai_usage_reset and now >= subscription.ai_usage_reset:
            self.reset_usage_cycle(subscription, now)

        return AIUsageStatus(
            can_use=self.can_use_ai(subscription),
            current_usage=subscription.ai_usage_count or 0,
            limit=plans.ai_limit(subscription.plan),
            remaining=self.ai_limit_remaining(subscription),
            reset_date=subscription.ai_usage_reset,
            plan=subscription.plan,
        )

    def record_ai_usage_for_user(self, user_id: str) -> Subscription:
        """
        Record one AI generation for the user's active subscription.

        Raises:
            ForbiddenError: No active subscription
            QuotaExceeded: Plan limit reached
        """
        self.check_ai_usage_limit(user_id)
        subscription = self.get_active_subscription(user_id)
        if not subscription:
            raise ForbiddenError("Aucun abonnement actif pour utiliser l'IA")
        return self.record_ai_usage(subscription)

    def check_letter_creation_limit(self, user_id: str, current_count: int) -> LetterLimitStatus:
        """Letter quota for a user given how many letters they already have."""
        subscription = self.get_active_subscription(user_id)
        plan = subscription.plan if subscription else "free"
        limit = plans.letter_limit(plan)

        return LetterLimitStatus(
            can_create=plans.is_unlimited(limit) or current_count < limit,
            current_count=current_count,
            limit=limit,
            plan=plan,
        )

    # ------------------------------------------------------------------
    # Scheduled maintenance
    # ------------------------------------------------------------------

    def reset_due_usage_cycles(self, now: Optional[datetime] = None) -> int:
        """Reset every active subscription whose usage cycle boundary has passed."""
        now = now or self.clock()
        due = (
            self._require_db()
            .query(Subscription)
            .filter(
                Subscription.status.in_(SubscriptionStatus.USABLE),
                Subscription.ai_usage_reset.isnot(None),
                Subscription.ai_usage_reset <= now,
            )
            .all()
        )

        for subscription in due:
            self.reset_usage_cycle(subscription, now)

        if due:
            logger.info(f"{len(due)} AI usage cycles reset")
        return len(due)

    def expire_lapsed_subscriptions(self, now: Optional[datetime] = None) -> int:
        """Expire ACTIVE subscriptions whose end date has passed."""
        now = now or self.clock()
        lapsed = (
            self._require_db()
            .query(Subscription)
            .filter(
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.end_date.isnot(None),
                Subscription.end_date <= now,
            )
            .all()
        )

        for subscription in lapsed:
            reason = "cancelled_at_period_end" if subscription.cancel_at_period_end else "end_date_passed"
            self.expire(subscription, reason=reason)

        if lapsed:
            logger.info(f"{len(lapsed)} expired subscriptions cleaned up")
        return len(lapsed)
