"""
Plan Rules - Static table of metered actions and per-plan allowances.

Allowances come from settings so operators can tune ceilings without a
deploy. A ceiling of zero or less means the plan is unbounded for that action.
"""

from dataclasses import dataclass

from governance.config import Settings, settings
from governance.models.api import ActionKind, PlanTier
from governance.services.periods import QuotaPeriod


@dataclass(frozen=True)
class QuotaRule:
    """Allowance for one metered action, per plan, over one period."""

    action: str
    period: QuotaPeriod
    free: int | None
    pro: int | None
    family: int | None
    enterprise: int | None

    def allowance(self, plan: PlanTier) -> int | None:
        """Ceiling for plan; None means unbounded."""
        return {
            PlanTier.FREE: self.free,
            PlanTier.PRO: self.pro,
            PlanTier.FAMILY: self.family,
            PlanTier.ENTERPRISE: self.enterprise,
        }[plan]


def _ceiling(value: int) -> int | None:
    return value if value > 0 else None


def build_rules(config: Settings) -> dict[str, QuotaRule]:
    """Build the rule table from settings."""
    meal_rule = QuotaRule(
        action=ActionKind.MEAL_GENERATION.value,
        period=QuotaPeriod.DAY,
        free=_ceiling(config.quota_free_daily_meals),
        pro=_ceiling(config.quota_pro_daily_meals),
        family=_ceiling(config.quota_family_daily_meals),
        enterprise=_ceiling(config.quota_enterprise_daily_meals),
    )
    return {meal_rule.action: meal_rule}


QUOTA_RULES: dict[str, QuotaRule] = build_rules(settings)


def rule_for(action: str) -> QuotaRule | None:
    """Rule for action, or None when the action is unmetered."""
    return QUOTA_RULES.get(action)
