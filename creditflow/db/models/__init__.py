# SQLAlchemy models
from .base import Base
from .content import Definition, Domain, Exercise
from .prerequisites import NodePrerequisite
from .progress import (
    DEFAULT_EASINESS,
    ReviewHistory,
    SessionReview,
    StudySession,
    UserNodeProgress,
)

__all__ = [
    # Base
    "Base",
    # Content (owned by the editor, read here)
    "Domain",
    "Definition",
    "Exercise",
    # Graph
    "NodePrerequisite",
    # Progress
    "DEFAULT_EASINESS",
    "UserNodeProgress",
    "ReviewHistory",
    "StudySession",
    "SessionReview",
]
