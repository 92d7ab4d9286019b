"""
Shared pytest fixtures: identity provider keys, a mocked JWKS endpoint and an
in-process stand-in for the asyncpg pool behind the plan store.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import asyncpg
import httpx
import pytest

from shared.test_helpers import TEST_JWKS_URL, create_identity_provider


class FakeJWKSEndpoint:
    """httpx transport serving the identity provider's JWKS document."""

    def __init__(self, provider):
        self.provider = provider
        self.requests = 0
        self.fail_with: Optional[Exception] = None
        self.status_code = 200
        self.body: Optional[bytes] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        assert str(request.url) == TEST_JWKS_URL
        self.requests += 1
        if self.fail_with is not None:
            raise self.fail_with
        if self.body is not None:
            return httpx.Response(self.status_code, content=self.body)
        return httpx.Response(self.status_code, json=self.provider.jwks())

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakePlanDatabase:
    """Plan rows keyed by subject id, with the table's primary key enforced."""

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.statements: List[str] = []
        self.schema_created = False
        # Exceptions raised by the next statements, in order
        self.failures: List[Exception] = []

    async def _before_statement(self, query: str):
        self.statements.append(" ".join(query.split()))
        # Let concurrent callers interleave between statements
        await asyncio.sleep(0)
        if self.failures:
            raise self.failures.pop(0)

    def _row(self, subject_id: str, plan: str) -> Dict[str, Any]:
        return {"subject_id": subject_id, "plan": plan, "updated_at": datetime.now(timezone.utc)}

    async def execute(self, query: str, *args):
        await self._before_statement(query)
        if "CREATE TABLE" in query:
            self.schema_created = True
        return "OK"

    async def fetchval(self, query: str, *args):
        await self._before_statement(query)
        return 1

    async def fetchrow(self, query: str, *args):
        await self._before_statement(query)
        statement = " ".join(query.split())
        subject_id = args[0]

        if statement.startswith("SELECT"):
            row = self.rows.get(subject_id)
            return dict(row) if row else None

        if statement.startswith("INSERT") and "ON CONFLICT" in statement:
            self.rows[subject_id] = self._row(subject_id, args[1])
            return dict(self.rows[subject_id])

        if statement.startswith("INSERT"):
            if subject_id in self.rows:
                raise asyncpg.UniqueViolationError(
                    'duplicate key value violates unique constraint "user_plans_pkey"'
                )
            self.rows[subject_id] = self._row(subject_id, args[1])
            return dict(self.rows[subject_id])

        if statement.startswith("UPDATE"):
            if subject_id not in self.rows:
                return None
            self.rows[subject_id] = self._row(subject_id, args[1])
            return dict(self.rows[subject_id])

        raise AssertionError(f"Unexpected statement: {statement}")

    def count(self, prefix: str) -> int:
        return sum(1 for statement in self.statements if statement.startswith(prefix))


class FakePool:
    """Minimal asyncpg pool: ``acquire()`` hands out the shared fake database."""

    def __init__(self, database: FakePlanDatabase):
        self.database = database
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        yield self.database

    async def close(self):
        self.closed = True


@pytest.fixture
def identity_provider():
    """Identity provider publishing one RSA signing key."""
    return create_identity_provider()


@pytest.fixture
def jwks_endpoint(identity_provider):
    """Mocked JWKS endpoint for the identity provider."""
    return FakeJWKSEndpoint(identity_provider)


@pytest.fixture
def plan_database():
    """Empty plan table."""
    return FakePlanDatabase()


@pytest.fixture
def plan_pool(plan_database):
    """Pool handing out the fake plan table."""
    return FakePool(plan_database)
