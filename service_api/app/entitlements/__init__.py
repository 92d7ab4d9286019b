"""
Entitlements package.

- policy: the plan to capability mapping and collaborator-side checks.
- middleware: the request gate that attaches entitlements per request.
"""

from .policy import (
    Entitlements,
    EntitlementsResponse,
    FREE_ENTITLEMENTS,
    KNOWN_PLANS,
    PLAN_FREE,
    PLAN_PREMIUM,
    PREMIUM_ENTITLEMENTS,
    resolve_entitlements,
)

__all__ = [
    "Entitlements",
    "EntitlementsResponse",
    "FREE_ENTITLEMENTS",
    "KNOWN_PLANS",
    "PLAN_FREE",
    "PLAN_PREMIUM",
    "PREMIUM_ENTITLEMENTS",
    "resolve_entitlements",
]
