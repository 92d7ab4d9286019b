"""
JWKS key resolver for the identity provider.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import httpx

from shared.errors import ConfigurationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


class KeyNotFoundError(LookupError):
    """No signing key with the requested key id is published."""

    def __init__(self, kid: str):
        self.kid = kid
        super().__init__(f"Signing key not found: {kid}")


class JWKSFetchError(Exception):
    """The JWKS document could not be fetched or parsed."""


@dataclass(frozen=True)
class KeySet:
    """Immutable snapshot of the published signing keys."""

    keys: Mapping[str, Dict[str, Any]] = field(default_factory=lambda: MappingProxyType({}))
    fetched_at: float = 0.0

    def get(self, kid: str) -> Optional[Dict[str, Any]]:
        return self.keys.get(kid)

    def __len__(self) -> int:
        return len(self.keys)


def jwks_url_for(domain: str) -> str:
    return f"https://{domain}/.well-known/jwks.json"


def parse_jwks(payload: Any) -> KeySet:
    """Build a key set from a JWKS document, skipping keys without a kid."""
    if not isinstance(payload, dict):
        raise JWKSFetchError("JWKS document is not a JSON object")

    keys = payload.get("keys")
    if not isinstance(keys, list):
        raise JWKSFetchError("JWKS response missing 'keys' array")

    by_kid: Dict[str, Dict[str, Any]] = {}
    for key in keys:
        if not isinstance(key, dict):
            continue
        kid = key.get("kid")
        if not isinstance(kid, str) or not kid:
            continue
        if key.get("use", "sig") != "sig":
            continue
        by_kid[kid] = dict(key)

    if not by_kid:
        raise JWKSFetchError("JWKS contains no usable signing keys")

    return KeySet(keys=MappingProxyType(by_kid), fetched_at=time.time())


class KeyResolver:
    """Fetches, caches and refreshes the identity provider's signing keys.

    Readers only ever dereference ``self._key_set``; refreshes build a new
    ``KeySet`` and swap the reference, so a concurrent reader sees either the
    old or the new set, never a mix.
    """

    def __init__(
        self,
        domain: Optional[str],
        audience: Optional[str],
        *,
        refresh_interval: float = 300.0,
        min_refresh_interval: float = 30.0,
        http_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        if not domain or not audience:
            raise ConfigurationError(
                "AUTH0_DOMAIN or AUTH0_AUDIENCE is missing",
                details={"domain_set": bool(domain), "audience_set": bool(audience)},
            )

        self.domain = domain
        self.audience = audience
        self.issuer = f"https://{domain}/"
        self.jwks_url = jwks_url_for(domain)
        self.refresh_interval = refresh_interval
        self.min_refresh_interval = min_refresh_interval
        self.metrics = metrics
        self.logger = get_logger("api.jwks")

        self._key_set = KeySet()
        self._last_refresh_attempt: float = float("-inf")
        self._generation = 0
        self._lock = asyncio.Lock()
        self._client = httpx.AsyncClient(timeout=http_timeout, transport=transport)
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def key_set(self) -> KeySet:
        return self._key_set

    def key_set_age(self) -> Optional[float]:
        """Seconds since the current key set was fetched, None before the first load."""
        if not len(self._key_set):
            return None
        return round(max(0.0, time.time() - self._key_set.fetched_at), 3)

    async def start(self) -> None:
        """Load the key set and schedule background refresh.

        Raises ``ConfigurationError`` when no usable key set can be loaded;
        the service must not start serving without one.
        """
        try:
            await self.refresh()
        except JWKSFetchError as exc:
            raise ConfigurationError(
                "Failed to load JWKS from identity provider",
                details={"jwks_url": self.jwks_url, "error": str(exc)},
            ) from exc

        if self.refresh_interval > 0 and self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def close(self) -> None:
        """Stop background refresh and close the HTTP client."""
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None
        await self._client.aclose()

    async def resolve(self, kid: str) -> Dict[str, Any]:
        """Return the JWK for ``kid``, refreshing once on a miss."""
        key = self._key_set.get(kid)
        if key is not None:
            return key

        # Possibly rotated; refresh unless one just happened
        if time.monotonic() - self._last_refresh_attempt >= self.min_refresh_interval:
            try:
                await self.refresh()
            except JWKSFetchError as exc:
                self.logger.warning("JWKS refresh on unknown kid failed", kid=kid, error=str(exc))

        key = self._key_set.get(kid)
        if key is None:
            self.logger.warning("Key not found", kid=kid, known_kids=sorted(self._key_set.keys))
            raise KeyNotFoundError(kid)
        return key

    async def refresh(self) -> KeySet:
        """Fetch the JWKS and swap in the new key set.

        On failure the previous key set stays in place and ``JWKSFetchError``
        is raised.
        """
        generation = self._generation
        async with self._lock:
            # Another caller swapped in a fresh set while we waited for the lock
            if self._generation != generation:
                return self._key_set

            self._last_refresh_attempt = time.monotonic()
            try:
                key_set = await self._fetch()
            except JWKSFetchError:
                self._record_refresh("error")
                raise

            self._key_set = key_set
            self._generation += 1
            self._record_refresh("ok")
            self.logger.info("JWKS refreshed successfully", keys_count=len(key_set))
            return key_set

    async def _fetch(self) -> KeySet:
        try:
            response = await self._client.get(self.jwks_url)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise JWKSFetchError(f"JWKS request failed: {exc}") from exc
        except ValueError as exc:
            raise JWKSFetchError("JWKS response is not valid JSON") from exc

        return parse_jwks(payload)

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            try:
                await self.refresh()
            except JWKSFetchError as exc:
                self.logger.warning(
                    "Background JWKS refresh failed, keeping last known keys",
                    error=str(exc),
                    keys_count=len(self._key_set),
                    key_set_age_seconds=self.key_set_age(),
                )
            except Exception as exc:
                self.logger.error(
                    "Unexpected error in background JWKS refresh",
                    error=str(exc),
                    exc_info=True,
                )

    def _record_refresh(self, result: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("jwks_refresh_total", result=result)
