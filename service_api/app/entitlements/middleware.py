"""
Entitlement gate: the second stage of every protected request.
"""

from typing import Optional

from fastapi import Depends, Request

from shared.errors import EntitlementLookupFault, PlanStoreError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..auth.middleware import AuthenticationGate
from ..context import RequestContext
from ..plans.store import PlanStore
from .policy import resolve_entitlements


class EntitlementGate:
    """FastAPI dependency that attaches the caller's entitlements.

    Depends on the authentication gate, so it never runs for an
    unauthenticated request. The plan is read on every request; a storage
    failure rejects the request rather than falling back to a default plan.
    """

    def __init__(self, auth_gate: AuthenticationGate, plan_store: PlanStore,
                 metrics: Optional[MetricsCollector] = None):
        self.auth_gate = auth_gate
        self.plan_store = plan_store
        self.metrics = metrics
        self.logger = get_logger("api.entitlement_gate")
        self.dependency = self._build_dependency()

    def _build_dependency(self):
        auth_gate = self.auth_gate

        async def require_entitlements(request: Request,
                                       subject_id: str = Depends(auth_gate)) -> RequestContext:
            return await self.attach(request, subject_id)

        return require_entitlements

    async def attach(self, request: Request, subject_id: str) -> RequestContext:
        try:
            record = await self.plan_store.get_plan(subject_id)
        except PlanStoreError as exc:
            self.logger.error(
                "Failed to load plan for entitlements",
                subject_id=subject_id,
                error=exc.message,
                details=exc.details
            )
            if self.metrics is not None:
                self.metrics.increment_counter("entitlement_lookup_faults_total")
            raise EntitlementLookupFault(details={"subject_id": subject_id, **exc.details}) from exc

        context = RequestContext(
            subject_id=subject_id,
            plan=record.plan,
            entitlements=resolve_entitlements(record.plan),
        )
        request.state.context = context
        return context
