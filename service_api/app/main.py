"""
API service for What Went Wrong.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.retry import RetryConfig
from .auth.middleware import AuthenticationGate
from .context import RequestContext
from .entitlements.middleware import EntitlementGate
from .entitlements.policy import EntitlementsResponse, resolve_entitlements
from .jwks.client import KeyResolver
from .plans.models import PlanChangeRequest, PlanResponse
from .plans.store import PlanStore
from .validation.token_validator import TokenVerifier


class ApiService(BaseService):
    """API service implementation.

    ``key_resolver`` and ``plan_store`` may be injected; otherwise they are
    built from configuration. Missing identity configuration raises
    ``ConfigurationError`` here, before the app exists.
    """

    def __init__(self, config: Optional[ServiceConfig] = None, *,
                 key_resolver: Optional[KeyResolver] = None,
                 plan_store: Optional[PlanStore] = None):
        config = config or get_config("api", 8080)
        super().__init__("api", config.port, config=config)

        self.key_resolver = key_resolver or KeyResolver(
            self.config.auth0_domain,
            self.config.auth0_audience,
            refresh_interval=self.config.jwks_refresh_interval,
            min_refresh_interval=self.config.jwks_min_refresh_interval,
            http_timeout=self.config.jwks_http_timeout,
            metrics=self.metrics,
        )
        self.token_verifier = TokenVerifier(
            self.key_resolver,
            algorithms=self.config.algorithm_list,
        )
        self.plan_store = plan_store or PlanStore(
            self.config.postgres_dsn,
            retry_config=RetryConfig(
                max_attempts=self.config.plan_store_max_attempts,
                base_delay=self.config.plan_store_retry_base_delay,
            ),
            metrics=self.metrics,
            min_size=self.config.postgres_pool_min_size,
            max_size=self.config.postgres_pool_max_size,
            command_timeout=self.config.postgres_command_timeout,
        )

        self.auth_gate = AuthenticationGate(self.token_verifier, metrics=self.metrics)
        self.entitlement_gate = EntitlementGate(self.auth_gate, self.plan_store, metrics=self.metrics)

        self._setup_api_routes()

    async def on_startup(self):
        await self.key_resolver.start()
        await self.plan_store.start()
        self.logger.info(
            "API service started",
            jwks_keys=len(self.key_resolver.key_set),
            issuer=self.key_resolver.issuer
        )

    async def on_shutdown(self):
        await self.key_resolver.close()
        await self.plan_store.stop()

    def _setup_api_routes(self):
        """Set up routes under /api/v1, all behind both gates."""
        require_context = self.entitlement_gate.dependency
        router = APIRouter(prefix="/api/v1", dependencies=[Depends(require_context)])

        @router.get("/me/plan", response_model=PlanResponse)
        async def get_me_plan(context: RequestContext = Depends(require_context)):
            """Current plan and active entitlements."""
            return PlanResponse(
                plan=context.plan,
                entitlements=EntitlementsResponse.from_entitlements(context.entitlements),
            )

        @router.post("/me/plan", response_model=PlanResponse)
        async def post_me_plan(request: PlanChangeRequest,
                               context: RequestContext = Depends(require_context)):
            """Change the caller's plan; takes effect from the next request."""
            record = await self.plan_store.set_plan(context.subject_id, request.plan)

            self.logger.info(
                "Plan changed",
                subject_id=context.subject_id,
                previous_plan=context.plan,
                plan=record.plan
            )

            return PlanResponse(
                plan=record.plan,
                entitlements=EntitlementsResponse.from_entitlements(resolve_entitlements(record.plan)),
            )

        self.app.include_router(router)

    async def _check_dependencies(self):
        """Check API dependencies."""
        return {
            "jwks": "ok" if len(self.key_resolver.key_set) else "error",
            "postgres": "ok" if await self.plan_store.health_check() else "error",
        }

    def _health_details(self):
        return {
            "jwks_keys": len(self.key_resolver.key_set),
            "jwks_key_set_age_seconds": self.key_resolver.key_set_age(),
        }


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = ApiService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    service = ApiService()
    service.run()
