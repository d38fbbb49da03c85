"""API routers for creditflow."""

from creditflow.api.routers import srs_router

__all__ = [
    "srs_router",
]
