"""
Authentication helpers for the API service.
"""

from .middleware import AuthenticationGate, extract_bearer_token

__all__ = [
    "AuthenticationGate",
    "extract_bearer_token",
]
