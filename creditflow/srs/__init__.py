"""
Spaced repetition scheduling over the prerequisite graph.

Components:
- SM2Scheduler: SM-2 interval model for explicit reviews
- ProgressUpdater: Applies a credit flow to persisted progress
- StatusPropagator: Cascades status changes through the graph
- SRSService: Transactional facade used by the API and CLI
"""

from .progress_updater import ProgressUpdater
from .service import DueReview, ReviewOutcome, ReviewRequest, SRSService
from .sm2 import SM2Config, SM2Result, SM2Scheduler
from .status_propagation import StatusPropagator, propagate_status

__all__ = [
    # Scheduling
    "SM2Config",
    "SM2Result",
    "SM2Scheduler",
    # Progress
    "ProgressUpdater",
    "StatusPropagator",
    "propagate_status",
    # Service
    "SRSService",
    "ReviewRequest",
    "ReviewOutcome",
    "DueReview",
]
