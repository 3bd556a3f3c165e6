"""
Plan catalog for MotivAI subscriptions.

Defines available plans, pricing, AI/letter quotas and the feature set of each
plan. The catalog is static: it is seeded in code and never mutated at runtime.

Limits use ``None`` for "unlimited".
"""
import calendar
from datetime import datetime
from typing import Dict, Any, List, Optional


# =============================================================================
# Features
# =============================================================================

AI_GENERATION = "ai_generation"
UNLIMITED_LETTERS = "unlimited_letters"
TEMPLATES_ACCESS = "templates_access"
PREMIUM_TEMPLATES = "premium_templates"
EXPORT_PDF = "export_pdf"
EXPORT_DOCX = "export_docx"
ANALYTICS = "analytics"
ADVANCED_ANALYTICS = "advanced_analytics"
VIP_SUPPORT = "vip_support"
CUSTOM_BRANDING = "custom_branding"


# =============================================================================
# Plans
# =============================================================================

PLAN_CATALOG: Dict[str, Dict[str, Any]] = {
    "free": {
        "name": "Gratuit",
        "description": "Plan gratuit avec fonctionnalités de base",
        "price": 0.0,
        "currency": "eur",
        "interval": "month",
        "trial_days": 0,
        "is_active": True,
        "highlights": ["3 lettres maximum", "Modèles de base", "Export PDF"],
        "features": [TEMPLATES_ACCESS, EXPORT_PDF],
        "ai_limit": 0,
        "letter_limit": 3,
    },
    "basic": {
        "name": "Basique",
        "description": "Plan basique pour utilisateurs occasionnels",
        "price": 9.99,
        "currency": "eur",
        "interval": "month",
        "trial_days": 7,
        "is_active": True,
        "highlights": ["Lettres illimitées", "5 générations IA/mois", "Modèles premium", "Export PDF/DOCX"],
        "features": [TEMPLATES_ACCESS, UNLIMITED_LETTERS, AI_GENERATION, EXPORT_PDF, EXPORT_DOCX],
        "ai_limit": 5,
        "letter_limit": None,
    },
    "pro": {
        "name": "Professionnel",
        "description": "Plan professionnel avec IA avancée",
        "price": 19.99,
        "currency": "eur",
        "interval": "month",
        "trial_days": 14,
        "is_active": True,
        "highlights": [
            "Lettres illimitées",
            "20 générations IA/mois",
            "Tous les modèles",
            "Analytiques",
            "Support prioritaire",
        ],
        "features": [
            TEMPLATES_ACCESS,
            PREMIUM_TEMPLATES,
            UNLIMITED_LETTERS,
            AI_GENERATION,
            EXPORT_PDF,
            EXPORT_DOCX,
            ANALYTICS,
        ],
        "ai_limit": 20,
        "letter_limit": None,
    },
    "premium": {
        "name": "Premium",
        "description": "Plan premium avec IA illimitée",
        "price": 39.99,
        "currency": "eur",
        "interval": "month",
        "trial_days": 30,
        "is_active": True,
        "highlights": [
            "Lettres illimitées",
            "IA illimitée",
            "Tous les modèles",
            "Analytiques avancées",
            "Support VIP",
        ],
        "features": [
            TEMPLATES_ACCESS,
            PREMIUM_TEMPLATES,
            UNLIMITED_LETTERS,
            AI_GENERATION,
            EXPORT_PDF,
            EXPORT_DOCX,
            ANALYTICS,
            ADVANCED_ANALYTICS,
            VIP_SUPPORT,
            CUSTOM_BRANDING,
        ],
        "ai_limit": None,  # unlimited
        "letter_limit": None,
    },
}

# Legacy subscription plan values still present on older records
LEGACY_PLAN_ALIASES: Dict[str, str] = {
    "monthly": "basic",
    "lifetime": "premium",
}

# Ordering used to decide whether a plan change is an upgrade or a downgrade
PLAN_RANK: Dict[str, int] = {"free": 0, "basic": 1, "pro": 2, "premium": 3}

# Lifetime subscriptions never bill again; their next boundary is pushed out
LIFETIME_HORIZON_YEARS = 125


def resolve_plan(plan: Optional[str]) -> str:
    """
    Map a subscription plan value onto a catalog key.

    Legacy values are aliased, unknown values fall back to the free plan.
    """
    if not plan:
        return "free"

    key = str(plan).lower()
    key = LEGACY_PLAN_ALIASES.get(key, key)
    if key not in PLAN_CATALOG:
        return "free"
    return key


def get_plan(plan: Optional[str]) -> Dict[str, Any]:
    """
    Get catalog configuration for a plan.

    Args:
        plan: Plan identifier (free, basic, pro, premium, or a legacy alias)

    Returns:
        Plan configuration dictionary
    """
    return PLAN_CATALOG[resolve_plan(plan)]


def get_all_plans(active_only: bool = True) -> List[Dict[str, Any]]:
    """
    Get all catalog plans ordered by price.

    Returns:
        List of plan configurations including their ``id``
    """
    plans = [
        {"id": plan_id, **config}
        for plan_id, config in PLAN_CATALOG.items()
        if config["is_active"] or not active_only
    ]
    return sorted(plans, key=lambda p: p["price"])


def has_feature(plan: Optional[str], feature: str) -> bool:
    """Check whether a plan grants a feature."""
    return feature in get_plan(plan)["features"]


def ai_limit(plan: Optional[str]) -> Optional[int]:
    """Monthly AI generation limit for a plan, ``None`` when unlimited."""
    return get_plan(plan)["ai_limit"]


def letter_limit(plan: Optional[str]) -> Optional[int]:
    """Letter count limit for a plan, ``None`` when unlimited."""
    return get_plan(plan)["letter_limit"]


def plan_rank(plan: Optional[str]) -> int:
    return PLAN_RANK[resolve_plan(plan)]


def is_unlimited(limit: Optional[int]) -> bool:
    """
    Check if a limit is unlimited.

    Args:
        limit: Limit value

    Returns:
        True if unlimited (limit is None)
    """
    return limit is None


def get_usage_percentage(used: int, limit: Optional[int]) -> float:
    """
    Calculate usage percentage.

    Args:
        used: Current usage
        limit: Maximum limit (None for unlimited)

    Returns:
        Usage percentage (0-100), or 0 for unlimited
    """
    if is_unlimited(limit):
        return 0.0

    if limit == 0:
        return 100.0

    return min((used / limit) * 100, 100.0)


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_billing_date(current: datetime, interval: Optional[str]) -> datetime:
    """
    Compute the next billing boundary.

    Args:
        current: Reference date (billing cycle anchor or previous boundary)
        interval: monthly, yearly or lifetime (month/year accepted too)

    Returns:
        Next boundary; lifetime pushes the boundary out of reach
    """
    if interval in ("yearly", "year"):
        return add_months(current, 12)
    if interval == "lifetime":
        return add_months(current, 12 * LIFETIME_HORIZON_YEARS)
    return add_months(current, 1)


def first_day_of_next_month(value: datetime) -> datetime:
    """Midnight on the first day of the month following ``value``."""
    return add_months(value.replace(day=1, hour=0, minute=0, second=0, microsecond=0), 1)
