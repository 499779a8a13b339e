"""
Stripe product catalog.

Single source of truth for which Stripe product ids map to which internal
plan, per environment. Plans collapse to a smaller set of entitlement tiers.
"""
import logging
import os
from typing import Dict, Mapping, Optional

from membership_api.core import config
from membership_api.core.environment import Environment

logger = logging.getLogger(__name__)

FREE = "free"

# Entitlement tiers
TIER_FREE = "free"
TIER_PREMIUM = "premium"
TIER_COLLEGE_SCOUT = "college_scout"

# Plan -> tier
PLAN_TIERS: Dict[str, str] = {
    FREE: TIER_FREE,
    "pro_monthly": TIER_PREMIUM,
    "championship_yearly": TIER_PREMIUM,
    "recruiter_monthly": TIER_COLLEGE_SCOUT,
    "recruiter_yearly": TIER_COLLEGE_SCOUT,
}

PAID_PLANS = [plan for plan in PLAN_TIERS if plan != FREE]

DEFAULT_PRODUCT_IDS: Dict[Environment, Dict[str, str]] = {
    Environment.SANDBOX: {
        "pro_monthly": "prod_TUoekzjBHK03sK",
        "championship_yearly": "prod_TUof9o3BMn9YFH",
        "recruiter_monthly": "prod_T9Vq2TSF3rfzDp",
        "recruiter_yearly": "prod_T9VqwYb5CEEool",
    },
    Environment.PRODUCTION: {
        "pro_monthly": "prod_TF4xtIZXfWy5sa",
        "championship_yearly": "prod_TF4zr2EcShQH1M",
        # Recruiter products have not been split out of sandbox yet.
        "recruiter_monthly": "prod_T9Vq2TSF3rfzDp",
        "recruiter_yearly": "prod_T9VqwYb5CEEool",
    },
}


def plan_tier(plan: Optional[str]) -> str:
    """Tier for a stored plan name. Unknown plans read as free."""
    if not plan:
        return TIER_FREE
    return PLAN_TIERS.get(plan, TIER_FREE)


def is_paid_plan(plan: Optional[str]) -> bool:
    return plan_tier(plan) != TIER_FREE


def _build_product_table() -> Dict[Environment, Dict[str, str]]:
    """Default ids, overridable per plan with STRIPE_PRODUCT_<ENV>_<PLAN>."""
    table: Dict[Environment, Dict[str, str]] = {}
    for environment, defaults in DEFAULT_PRODUCT_IDS.items():
        plans = {}
        for plan, product_id in defaults.items():
            env_name = f"STRIPE_PRODUCT_{environment.value.upper()}_{plan.upper()}"
            plans[plan] = os.getenv(env_name) or product_id
        table[environment] = plans
    return table


class ProductCatalog:
    """
    Maps Stripe product ids to internal plans and tiers.

    Both lookups are total: anything unmapped degrades to free instead of
    raising, so webhook processing and status checks keep working when the
    catalog configuration drifts.
    """

    def __init__(
        self,
        products: Mapping[Environment, Mapping[str, str]],
        cross_environment_fallback: bool = True,
    ):
        self._products = {env: dict(plans) for env, plans in products.items()}
        self.cross_environment_fallback = cross_environment_fallback
        self._reverse = {
            env: {product_id: plan for plan, product_id in plans.items() if product_id}
            for env, plans in self._products.items()
        }

    def _lookup(self, product_id: str, environment: Environment) -> Optional[str]:
        plan = self._reverse.get(environment, {}).get(product_id)
        if plan is not None:
            return plan

        if self.cross_environment_fallback:
            plan = self._reverse.get(environment.other, {}).get(product_id)
            if plan is not None:
                logger.info(
                    f"Product {product_id} matched {environment.other.value} catalog "
                    f"while serving {environment.value}"
                )
                return plan
        return None

    def plan_for(self, product_id: Optional[str], environment: Environment) -> str:
        if not product_id or not isinstance(product_id, str):
            return FREE
        try:
            environment = Environment(environment)
        except ValueError:
            environment = Environment.SANDBOX
        plan = self._lookup(product_id, environment)
        if plan is None:
            logger.warning(f"Unmapped product_id={product_id} environment={environment.value}, treating as free")
            return FREE
        return plan

    def tier_for(self, product_id: Optional[str], environment: Environment) -> str:
        return plan_tier(self.plan_for(product_id, environment))

    def product_for(self, plan: str, environment: Environment) -> Optional[str]:
        return self._products.get(environment, {}).get(plan)


_catalog: Optional[ProductCatalog] = None


def get_catalog() -> ProductCatalog:
    """Process-wide catalog built from configuration."""
    global _catalog
    if _catalog is None:
        _catalog = ProductCatalog(
            _build_product_table(),
            cross_environment_fallback=config.CATALOG_CROSS_ENV_FALLBACK,
        )
    return _catalog
