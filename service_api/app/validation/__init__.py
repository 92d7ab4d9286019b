"""
Token validation package.

Validates bearer tokens issued by the upstream identity provider:

- Resolving the signing key by ``kid`` through the JWKS key resolver.
- Validating signature, audience, issuer, expiry and not-before.
- Narrowing the verified claims to a typed ``VerifiedToken``.

Every failure is an ``Unauthorized`` carrying a stable reason code; the
underlying library message is logged but never returned to the client.
"""

from .token_validator import TokenVerifier, VerifiedToken

__all__ = [
    "TokenVerifier",
    "VerifiedToken",
]
