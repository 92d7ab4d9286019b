"""
Plan record and request/response models.
"""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field

from ..entitlements.policy import EntitlementsResponse


@dataclass(frozen=True)
class PlanRecord:
    """A subject's persisted subscription plan."""
    subject_id: str
    plan: str
    updated_at: datetime


class PlanChangeRequest(BaseModel):
    """Request model for changing the caller's plan."""
    plan: str = Field(..., min_length=1, description="Target plan name", examples=["premium"])


class PlanResponse(BaseModel):
    """Response model for the caller's plan and entitlements."""
    plan: str = Field(..., examples=["premium"])
    entitlements: EntitlementsResponse
