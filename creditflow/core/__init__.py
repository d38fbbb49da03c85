"""
Core types shared by the graph engines, the scheduler and the service layer.
"""
from creditflow.core.errors import (
    ConcurrentUpdateError,
    InvalidInputError,
    NotFoundError,
    PreconditionError,
    SRSError,
    StorageError,
)
from creditflow.core.models import (
    CreditType,
    CreditUpdate,
    NodeKey,
    NodeStatus,
    NodeType,
    ReviewScope,
)

__all__ = [
    # Errors
    "SRSError",
    "InvalidInputError",
    "PreconditionError",
    "NotFoundError",
    "StorageError",
    "ConcurrentUpdateError",
    # Types
    "NodeType",
    "NodeStatus",
    "CreditType",
    "ReviewScope",
    "NodeKey",
    "CreditUpdate",
]
