"""
Authentication gate: the first stage of every protected request.
"""

from typing import Optional

from fastapi import Request

from shared.errors import Unauthorized
from shared.logging import get_logger, set_subject_context
from shared.metrics import MetricsCollector
from ..validation.token_validator import TokenVerifier

MISSING_OR_INVALID_HEADER = "missing or invalid Authorization header"


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an exact ``Bearer <token>`` header, else None."""
    if not authorization or not authorization.startswith("Bearer "):
        return None

    token = authorization[len("Bearer "):]
    if not token or token != token.strip() or " " in token:
        return None
    return token


class AuthenticationGate:
    """FastAPI dependency that authenticates the bearer token.

    On success the subject id is stored on ``request.state.subject_id`` and
    returned. Every failure, including unexpected verifier errors, raises
    ``Unauthorized`` so the request stops here.
    """

    def __init__(self, verifier: TokenVerifier, metrics: Optional[MetricsCollector] = None):
        self.verifier = verifier
        self.metrics = metrics
        self.logger = get_logger("api.auth_gate")

    async def __call__(self, request: Request) -> str:
        return await self.authenticate_request(request)

    async def authenticate_request(self, request: Request) -> str:
        token = extract_bearer_token(request.headers.get("Authorization"))
        if token is None:
            self._record_failure("missing_header")
            raise Unauthorized("missing_header", MISSING_OR_INVALID_HEADER, expose_reason=False)

        try:
            verified = await self.verifier.verify(token)
        except Unauthorized as exc:
            self._record_failure(exc.reason)
            raise
        except Exception as exc:
            self.logger.error("Token verification raised unexpectedly", error=str(exc), exc_info=True)
            self._record_failure("verifier_error")
            raise Unauthorized("verification_error", details={"error": str(exc)}) from exc

        request.state.subject_id = verified.subject_id
        set_subject_context(verified.subject_id)
        return verified.subject_id

    def _record_failure(self, reason: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("auth_failures_total", reason=reason)
