"""
PostgreSQL-backed plan store.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import asyncpg

from shared.errors import InvalidPlan, PlanStoreError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_on_exception
from ..entitlements.policy import KNOWN_PLANS, PLAN_FREE
from .models import PlanRecord

CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS user_plans (
        subject_id TEXT PRIMARY KEY,
        plan VARCHAR(50) NOT NULL DEFAULT 'free',
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    );
"""

SELECT_PLAN_SQL = """
    SELECT subject_id, plan, updated_at FROM user_plans WHERE subject_id = $1
"""

INSERT_PLAN_SQL = """
    INSERT INTO user_plans (subject_id, plan, updated_at)
    VALUES ($1, $2, NOW())
    RETURNING subject_id, plan, updated_at
"""

UPSERT_PLAN_SQL = """
    INSERT INTO user_plans (subject_id, plan, updated_at)
    VALUES ($1, $2, NOW())
    ON CONFLICT (subject_id) DO UPDATE SET
        plan = EXCLUDED.plan,
        updated_at = EXCLUDED.updated_at
    RETURNING subject_id, plan, updated_at
"""

UPDATE_PLAN_SQL = """
    UPDATE user_plans SET plan = $2, updated_at = NOW()
    WHERE subject_id = $1
    RETURNING subject_id, plan, updated_at
"""

# Worth another attempt: the statement may not have reached the server.
# OSError covers socket and DNS failures while the pool reconnects.
TRANSIENT_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


class PlanStore:
    """Reads and writes one plan row per subject.

    Races between concurrent requests for the same subject are settled by
    the primary key on ``subject_id``: a duplicate-key error on insert means
    another request already provisioned the row.
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        *,
        pool: Optional[Any] = None,
        retry_config: Optional[RetryConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 10.0,
    ):
        self.dsn = dsn
        self.pool = pool
        self.retry_config = retry_config or RetryConfig()
        self.metrics = metrics
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("api.plans.store")
        self._owns_pool = pool is None

    async def start(self):
        """Open the pool (unless one was injected) and ensure the table exists."""
        try:
            if self.pool is None:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=self.min_size,
                    max_size=self.max_size,
                    command_timeout=self.command_timeout
                )

            async with self.pool.acquire() as conn:
                await conn.execute(CREATE_TABLE_SQL)

            self.logger.info("Plan store started")

        except (asyncpg.PostgresError, *TRANSIENT_ERRORS) as e:
            self.logger.error("Failed to start plan store", error=str(e))
            raise PlanStoreError("Failed to start plan store", details={"error": str(e)}) from e

    async def stop(self):
        """Close the pool if this store opened it."""
        if self.pool is not None and self._owns_pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("Plan store stopped")

    async def get_plan(self, subject_id: str) -> PlanRecord:
        """Return the subject's plan, provisioning a free plan on first access."""
        return await self._run("get_plan", self._get_or_create, subject_id)

    async def set_plan(self, subject_id: str, plan: str) -> PlanRecord:
        """Create or replace the subject's plan. Raises ``InvalidPlan`` for unknown names."""
        if plan not in KNOWN_PLANS:
            raise InvalidPlan(plan, details={"subject_id": subject_id})

        record = await self._run("set_plan", self._upsert, subject_id, plan)
        self.logger.info("Plan updated", subject_id=subject_id, plan=record.plan)
        return record

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except (asyncpg.PostgresError, *TRANSIENT_ERRORS) as e:
            self.logger.warning("Plan store health check failed", error=str(e))
            return False

    async def _get_or_create(self, subject_id: str) -> PlanRecord:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(SELECT_PLAN_SQL, subject_id)
            if row is not None:
                return self._row_to_record(row)

            try:
                row = await conn.fetchrow(INSERT_PLAN_SQL, subject_id, PLAN_FREE)
            except asyncpg.UniqueViolationError:
                self.logger.info("Plan provisioned concurrently, re-reading", subject_id=subject_id)
                row = await conn.fetchrow(SELECT_PLAN_SQL, subject_id)
                if row is None:
                    raise PlanStoreError(
                        "Plan row vanished after duplicate insert",
                        details={"subject_id": subject_id}
                    )
                return self._row_to_record(row)

            self.logger.info("Default plan provisioned", subject_id=subject_id, plan=PLAN_FREE)
            if self.metrics is not None:
                self.metrics.increment_counter("plan_provisioned_total")
            return self._row_to_record(row)

    async def _upsert(self, subject_id: str, plan: str) -> PlanRecord:
        async with self.pool.acquire() as conn:
            try:
                row = await conn.fetchrow(UPSERT_PLAN_SQL, subject_id, plan)
            except asyncpg.UniqueViolationError:
                row = await conn.fetchrow(UPDATE_PLAN_SQL, subject_id, plan)
            if row is None:
                raise PlanStoreError("Plan upsert returned no row", details={"subject_id": subject_id})
            return self._row_to_record(row)

    async def _run(self, operation: str, func: Callable[..., Awaitable[PlanRecord]], *args) -> PlanRecord:
        """Run ``func`` with bounded retries on transient errors; wrap storage failures."""
        if self.pool is None:
            raise PlanStoreError("Plan store is not started", details={"operation": operation})

        try:
            return await retry_on_exception(TRANSIENT_ERRORS, self.retry_config)(func)(*args)
        except RetryError as e:
            raise PlanStoreError(
                "Plan store unavailable",
                details={"operation": operation, "attempts": e.attempts, "error": str(e.last_exception)}
            ) from e
        except asyncpg.PostgresError as e:
            self.logger.error("Plan store query failed", operation=operation, error=str(e))
            raise PlanStoreError(
                "Plan store query failed",
                details={"operation": operation, "error": str(e)}
            ) from e

    def _row_to_record(self, row) -> PlanRecord:
        return PlanRecord(
            subject_id=row["subject_id"],
            plan=row["plan"],
            updated_at=row["updated_at"],
        )
