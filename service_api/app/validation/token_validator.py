"""
Bearer token verification against the identity provider's signing keys.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from shared.errors import Unauthorized
from shared.logging import get_logger
from ..jwks.client import KeyNotFoundError, KeyResolver

# Stable failure reasons, safe to return to clients
MALFORMED_TOKEN = "malformed_token"
INVALID_SIGNATURE = "invalid_signature"
INVALID_AUDIENCE = "invalid_audience"
INVALID_ISSUER = "invalid_issuer"
TOKEN_EXPIRED = "token_expired"
TOKEN_NOT_YET_VALID = "token_not_yet_valid"
MISSING_EXPIRY = "missing_expiry"
MISSING_SUBJECT = "missing_subject"
INVALID_CLAIMS = "invalid_claims"

_FAILURE_MESSAGES = {
    TOKEN_EXPIRED: "token has expired",
    TOKEN_NOT_YET_VALID: "token is not yet valid",
}


def _failure(reason: str, error: Optional[str] = None, **details: Any) -> Unauthorized:
    if error is not None:
        details["error"] = error
    return Unauthorized(reason, _FAILURE_MESSAGES.get(reason, "invalid token"), details=details)


@dataclass(frozen=True)
class VerifiedToken:
    """The claims this service relies on, from a token that passed verification."""

    subject_id: str
    audience: str
    issuer: str
    expires_at: datetime


class TokenVerifier:
    """Validates signature, audience, issuer and lifetime of bearer tokens."""

    def __init__(
        self,
        key_resolver: KeyResolver,
        *,
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        algorithms: Iterable[str] = ("RS256",),
        leeway: int = 0,
    ) -> None:
        self.key_resolver = key_resolver
        self.audience = audience or key_resolver.audience
        self.issuer = issuer or key_resolver.issuer
        self.algorithms: List[str] = list(algorithms)
        self.leeway = leeway
        self.logger = get_logger("api.validator")

    async def verify(self, token: str) -> VerifiedToken:
        """Verify ``token`` and return its subject. Raises ``Unauthorized``."""
        try:
            verified = await self._verify(token)
        except Unauthorized as exc:
            self.logger.warning(
                "Token verification failed",
                reason=exc.reason,
                **exc.details
            )
            raise

        self.logger.debug("Token verified successfully", sub=verified.subject_id)
        return verified

    async def _verify(self, token: str) -> VerifiedToken:
        # 1. Structure
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise _failure(MALFORMED_TOKEN, str(exc)) from exc

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise _failure(MALFORMED_TOKEN, "JWT header missing key id (kid)")

        # 2. Key
        try:
            key_data = await self.key_resolver.resolve(kid)
        except KeyNotFoundError as exc:
            raise _failure(INVALID_SIGNATURE, str(exc), kid=kid) from exc

        key_alg = key_data.get("alg")
        if key_alg is not None and key_alg not in self.algorithms:
            raise _failure(INVALID_SIGNATURE, f"Key algorithm {key_alg} not accepted", kid=kid)

        # 3./4. Signature and lifetime; audience and issuer are checked below
        try:
            claims = jwt.decode(
                token,
                key_data,
                algorithms=self.algorithms,
                options={
                    "verify_aud": False,
                    "verify_iss": False,
                    "verify_sub": False,
                    "verify_jti": False,
                    "verify_at_hash": False,
                    "leeway": self.leeway,
                },
            )
        except ExpiredSignatureError as exc:
            raise _failure(TOKEN_EXPIRED, str(exc), kid=kid) from exc
        except JWTClaimsError as exc:
            reason = TOKEN_NOT_YET_VALID if "nbf" in str(exc) else INVALID_CLAIMS
            raise _failure(reason, str(exc), kid=kid) from exc
        except JWTError as exc:
            raise _failure(INVALID_SIGNATURE, str(exc), kid=kid) from exc

        return self._parse_claims(claims)

    def _parse_claims(self, claims: Dict[str, Any]) -> VerifiedToken:
        """Narrow verified claims to the typed values this service uses."""
        audience = claims.get("aud")
        audiences = audience if isinstance(audience, list) else [audience]
        if self.audience not in audiences:
            raise _failure(INVALID_AUDIENCE, "Invalid audience")

        if claims.get("iss") != self.issuer:
            raise _failure(INVALID_ISSUER, "Invalid issuer")

        exp = claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise _failure(MISSING_EXPIRY, "Token has no expiration time")

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise _failure(MISSING_SUBJECT, "JWT missing subject claim")

        return VerifiedToken(
            subject_id=subject,
            audience=self.audience,
            issuer=self.issuer,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )
