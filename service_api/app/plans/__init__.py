"""
Plan persistence package.
"""

from .models import PlanRecord, PlanChangeRequest, PlanResponse
from .store import PlanStore

__all__ = [
    "PlanChangeRequest",
    "PlanRecord",
    "PlanResponse",
    "PlanStore",
]
