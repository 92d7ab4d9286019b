"""
JWKS client package.

Contains logic for retrieving and caching the JSON Web Key Set used to
verify token signatures.

Key points:
- The key set is loaded once at startup; failing to load it is fatal.
- Refresh swaps an immutable snapshot, never mutates the live one.
- Unknown key ids trigger at most one rate-limited refresh, then fail.
"""

from .client import KeyResolver, KeySet, KeyNotFoundError, JWKSFetchError

__all__ = [
    "JWKSFetchError",
    "KeyNotFoundError",
    "KeyResolver",
    "KeySet",
]
