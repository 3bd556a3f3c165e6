"""
API endpoints for subscription management.

Endpoints:
- GET /subscriptions/plans - Get available plans (public)
- GET /subscriptions/current - Get current subscription details
- GET /subscriptions/ai-usage-limit - Get AI quota status
- POST /subscriptions/increment-ai-usage - Record one AI generation
- GET /subscriptions/letter-limit - Get letter quota status
- POST /subscriptions/change-plan - Upgrade or downgrade the current plan
- POST /subscriptions/{id}/cancel - Cancel a subscription
- POST /subscriptions/{id}/reactivate - Reactivate an expired/cancelled subscription
"""
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from motivai.core import plans
from motivai.core.auth import get_current_user
from motivai.core.errors import NotFoundError
from motivai.core.rate_limit import limiter
from motivai.db.base import get_db
from motivai.models import User
from motivai.schemas import (
    ApiResponse,
    CancelRequest,
    ChangePlanRequest,
    PlanInfo,
    ReactivateRequest,
)
from motivai.services.subscription import SubscriptionManager
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def get_subscription_manager(db: Session = Depends(get_db)) -> SubscriptionManager:
    return SubscriptionManager(db)


@router.get("/plans", response_model=ApiResponse)
@limiter.limit("100/hour")
async def get_plans(request: Request):
    """
    Get all active plans with their features and limits.

    Public endpoint - does not require authentication.
    """
    catalog = [
        PlanInfo(
            id=plan["id"],
            name=plan["name"],
            description=plan["description"],
            price=plan["price"],
            currency=plan["currency"],
            interval=plan["interval"],
            trial_days=plan["trial_days"],
            is_active=plan["is_active"],
            highlights=plan["highlights"],
            features=plan["features"],
            monthly_ai_limit=plan["ai_limit"],
            unlimited_ai=plans.is_unlimited(plan["ai_limit"]),
            letter_limit=plan["letter_limit"],
        )
        for plan in plans.get_all_plans()
    ]

    logger.debug(f"Retrieved {len(catalog)} plans")
    return ApiResponse(data=[p.model_dump(mode="json") for p in catalog])


@router.get("/current", response_model=ApiResponse)
@limiter.limit("60/minute")
async def get_current_subscription(
    request: Request,
    current_user: User = Depends(get_current_user),
    manager: SubscriptionManager = Depends(get_subscription_manager),
):
    """
    Get the current active subscription of the authenticated user.

    ``data`` is null when the user has no active subscription.
    """
    subscription = manager.get_active_subscription(current_user.id)
    if not subscription:
        return ApiResponse(data=None, message="Aucun abonnement actif")

    return ApiResponse(data=manager.to_detail(subscription).model_dump(mode="json"))


@router.get("/ai-usage-limit", response_model=ApiResponse)
@limiter.limit("60/minute")
async def get_ai_usage_limit(
    request: Request,
    current_user: User = Depends(get_current_user),
    manager: SubscriptionManager = Depends(get_subscription_manager),
):
    """Get AI usage against the plan quota, resetting the cycle when due."""
    usage = manager.check_ai_usage_limit(current_user.id)
    return ApiResponse(data=usage.model_dump(mode="json"))


@router.post("/increment-ai-usage", response_model=ApiResponse)
@limiter.limit("60/minute")
async def increment_ai_usage(
    request: Request,
    current_user: User = Depends(get_current_user),
    manager: SubscriptionManager = Depends(get_subscription_manager),
):
    """
    Record one AI generation for the authenticated user.

    Fails with 403 once the plan quota is reached.
    """
    manager.record_ai_usage_for_user(current_user.id)
    usage = manager.check_ai_usage_limit(current_user.id)

    logger.info(f"AI usage incremented for user {current_user.id}: {usage.current_usage}")
    return ApiResponse(data=usage.model_dump(mode="json"), message="Utilisation IA enregistrée")


@router.get("/letter-limit", response_model=ApiResponse)
@limiter.limit("60/minute")
async def get_letter_limit(
    request: Request,
    current_count: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    manager: SubscriptionManager = Depends(get_subscription_manager),
):
    """Check whether the user may create another letter."""
    status = manager.check_letter_creation_limit(current_user.id, current_count)
    return ApiResponse(data=status.model_dump(mode="json"))


@router.post("/change-plan", response_model=ApiResponse)
@limiter.limit("10/minute")
async def change_plan(
    request: Request,
    payload: ChangePlanRequest,
    current_user: User = Depends(get_current_user),
    manager: SubscriptionManager = Depends(get_subscription_manager),
):
    """Move the current active subscription to another plan."""
    subscription = manager.get_active_subscription(current_user.id)
    if not subscription:
        raise NotFoundError("Aucun abonnement actif")

    subscription = manager.change_plan(subscription, payload.plan, reason=payload.reason)
    return ApiResponse(
        data=manager.to_detail(subscription).model_dump(mode="json"),
        message="Plan mis à jour",
    )


@router.post("/{subscription_id}/cancel", response_model=ApiResponse)
@limiter.limit("10/minute")
async def cancel_subscription(
    request: Request,
    subscription_id: str,
    payload: CancelRequest,
    current_user: User = Depends(get_current_user),
    manager: SubscriptionManager = Depends(get_subscription_manager),
):
    """
    Cancel one of the user's subscriptions.

    With ``at_period_end`` the user keeps access until the end of the period.
    """
    subscription = manager.get_subscription(subscription_id, user_id=current_user.id)
    subscription = manager.cancel(subscription, reason=payload.reason, at_period_end=payload.at_period_end)
    return ApiResponse(
        data=manager.to_detail(subscription).model_dump(mode="json"),
        message="Abonnement annulé",
    )


@router.post("/{subscription_id}/reactivate", response_model=ApiResponse)
@limiter.limit("10/minute")
async def reactivate_subscription(
    request: Request,
    subscription_id: str,
    payload: ReactivateRequest,
    current_user: User = Depends(get_current_user),
    manager: SubscriptionManager = Depends(get_subscription_manager),
):
    """Bring an expired or cancelled subscription back to active."""
    subscription = manager.get_subscription(subscription_id, user_id=current_user.id)
    subscription = manager.reactivate(subscription, reason=payload.reason)
    return ApiResponse(
        data=manager.to_detail(subscription).model_dump(mode="json"),
        message="Abonnement réactivé",
    )
