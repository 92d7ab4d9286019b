"""
Plan to entitlement policy.

The table below is the product decision on what each plan allows. Anything
not listed resolves to the free policy.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.errors import ForbiddenError

PLAN_FREE = "free"
PLAN_PREMIUM = "premium"
KNOWN_PLANS = frozenset({PLAN_FREE, PLAN_PREMIUM})


@dataclass(frozen=True)
class Entitlements:
    """Capability set derived from a plan; ``log_retention_days`` None means unlimited."""

    max_goals: int
    log_retention_days: Optional[int]
    can_use_ai_excuse: bool
    can_use_premium_templates: bool

    def retention_cutoff(self, now: Optional[datetime] = None) -> Optional[date]:
        """Earliest log date visible under this plan, or None when unlimited."""
        if self.log_retention_days is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (now - timedelta(days=self.log_retention_days)).date()

    def ensure_can_create_goal(self, current_count: int) -> None:
        if current_count >= self.max_goals:
            raise ForbiddenError(
                "goal_limit_reached",
                "goal limit reached for current plan",
                details={"max_goals": self.max_goals, "current_count": current_count},
            )

    def ensure_premium_template_allowed(self, is_premium_template: bool) -> None:
        if is_premium_template and not self.can_use_premium_templates:
            raise ForbiddenError("premium_template_required", "premium template requires premium plan")

    def ensure_ai_excuse_allowed(self) -> None:
        if not self.can_use_ai_excuse:
            raise ForbiddenError("ai_excuse_not_allowed", "AI excuse requires premium plan")


FREE_ENTITLEMENTS = Entitlements(
    max_goals=3,
    log_retention_days=30,
    can_use_ai_excuse=False,
    can_use_premium_templates=False,
)

PREMIUM_ENTITLEMENTS = Entitlements(
    max_goals=100,
    log_retention_days=None,
    can_use_ai_excuse=True,
    can_use_premium_templates=True,
)

PLAN_POLICY: Dict[str, Entitlements] = {
    PLAN_FREE: FREE_ENTITLEMENTS,
    PLAN_PREMIUM: PREMIUM_ENTITLEMENTS,
}


def resolve_entitlements(plan: Optional[str]) -> Entitlements:
    """Map a plan name to its entitlements; unknown names get the free policy."""
    return PLAN_POLICY.get(plan, FREE_ENTITLEMENTS) if isinstance(plan, str) else FREE_ENTITLEMENTS


class EntitlementsResponse(BaseModel):
    """Wire format of an entitlement set."""

    model_config = ConfigDict(populate_by_name=True)

    max_goals: int = Field(..., alias="maxGoals")
    log_retention_days: Optional[int] = Field(None, alias="logRetentionDays")
    can_use_ai_excuse: bool = Field(..., alias="canUseAiExcuse")
    can_use_premium_templates: bool = Field(..., alias="canUsePremiumTemplates")

    @classmethod
    def from_entitlements(cls, entitlements: Entitlements) -> "EntitlementsResponse":
        return cls(
            max_goals=entitlements.max_goals,
            log_retention_days=entitlements.log_retention_days,
            can_use_ai_excuse=entitlements.can_use_ai_excuse,
            can_use_premium_templates=entitlements.can_use_premium_templates,
        )
