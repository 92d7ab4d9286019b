"""
Typed request-scoped state shared between the gates and route handlers.
"""

from dataclasses import dataclass

from fastapi import Request

from shared.errors import Unauthorized
from .entitlements.policy import Entitlements


@dataclass(frozen=True)
class RequestContext:
    """Authenticated subject and the entitlements derived for this request."""

    subject_id: str
    plan: str
    entitlements: Entitlements


def get_subject_id(request: Request) -> str:
    """Subject attached by the authentication gate; fails closed if absent."""
    subject_id = getattr(request.state, "subject_id", None)
    if not isinstance(subject_id, str) or not subject_id:
        raise Unauthorized("unauthenticated", "Unauthorized", expose_reason=False)
    return subject_id
