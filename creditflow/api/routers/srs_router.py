"""
SRS router for reviews, status updates and due-review listing.

Endpoints for:
- Explicit review submission with credit propagation
- Status updates with graph cascade
- Ordered due reviews and per-domain progress
- Review history
- Study sessions
- Prerequisite edge management

The caller is identified by the ``X-User-Id`` header; authentication happens
upstream of this service.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from loguru import logger
from pydantic import BaseModel, Field

from config import get_settings
from creditflow.core.errors import (
    InvalidInputError,
    NotFoundError,
    PreconditionError,
    SRSError,
    StorageError,
)
from creditflow.db.database import get_session_factory
from creditflow.srs.service import ReviewRequest, SRSService

router = APIRouter()


def get_srs_service() -> SRSService:
    """Service bound to the default engine and the configured tunables."""
    return SRSService.from_settings(get_session_factory(), get_settings())


def get_user_id(x_user_id: int = Header(..., alias="X-User-Id", ge=1)) -> int:
    return x_user_id


def _http_error(exc: SRSError) -> HTTPException:
    if isinstance(exc, InvalidInputError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, PreconditionError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, StorageError):
        logger.error(f"Transaction rolled back: {exc}")
        return HTTPException(
            status_code=503,
            detail=str(exc),
            headers={"Retry-After": "1"},
        )
    logger.exception("Unhandled scheduling error")
    return HTTPException(status_code=500, detail=str(exc))


# ========================================
# Request/Response Models
# ========================================


class ReviewSubmitRequest(BaseModel):
    """Request model for an explicit review."""

    node_id: int = Field(..., description="Reviewed item ID")
    node_type: str = Field(..., description="Item kind: 'definition' or 'exercise'")
    success: bool = Field(..., description="Whether the answer was correct")
    quality: int = Field(..., ge=0, le=5, description="SM-2 grade (0-5)")
    time_taken: int = Field(0, ge=0, description="Response time in seconds")
    session_id: Optional[int] = Field(None, description="Open study session to log the review in")


class ProgressResponse(BaseModel):
    """Per-user progress of one item."""

    node_id: int
    node_type: str
    status: str
    easiness_factor: float
    interval_days: float
    repetitions: int
    last_review: Optional[datetime] = None
    next_review: Optional[datetime] = None
    accumulated_credit: float
    credit_postponed: bool
    total_reviews: int
    successful_reviews: int
    code: Optional[str] = None
    name: Optional[str] = None


class CreditFlowItem(BaseModel):
    """One credit contribution of a review."""

    node_id: int
    node_type: str
    credit: float
    type: str


class ReviewSubmitResponse(BaseModel):
    """Response model for a review submission."""

    updated_nodes: list[ProgressResponse]
    credit_flow: list[CreditFlowItem]


class CreditPreviewRequest(BaseModel):
    """Request model for a credit flow preview."""

    domain_id: int
    node_id: int
    node_type: str = Field(..., description="Item kind: 'definition' or 'exercise'")
    success: bool = True


class CreditPreviewResponse(BaseModel):
    """Credit contributions a review would produce."""

    credits: list[CreditFlowItem]


class StatusUpdateRequest(BaseModel):
    """Request model for a status update."""

    node_id: int
    node_type: str = Field(..., description="Item kind: 'definition' or 'exercise'")
    status: str = Field(..., description="Target status: fresh, tackling, grasped or learned")


class StatusUpdateResponse(BaseModel):
    """Response model for a status update."""

    message: str
    changed_nodes: list[ProgressResponse] = Field(default_factory=list)


class DueNode(BaseModel):
    """A due item with presentation metadata."""

    node_id: int
    node_type: str
    code: str
    name: str
    status: str
    easiness_factor: float
    interval_days: float
    repetitions: int
    last_review: Optional[datetime]
    next_review: Optional[datetime]
    accumulated_credit: float
    credit_postponed: bool
    total_reviews: int
    successful_reviews: int
    days_until_review: int
    is_due: bool
    impact: float
    distance_from_root: int


class DueReviewsResponse(BaseModel):
    """Response model for due reviews."""

    due_nodes: list[DueNode]


class HistoryEntry(BaseModel):
    """One explicit review from the history log."""

    id: int
    node_id: int
    node_type: str
    review_time: datetime
    review_type: str
    success: bool
    quality: Optional[int]
    time_taken: Optional[int]
    credit_applied: float
    easiness_factor_before: Optional[float]
    easiness_factor_after: Optional[float]
    interval_before: Optional[float]
    interval_after: Optional[float]


class SessionStartRequest(BaseModel):
    """Request model for starting a study session."""

    domain_id: int
    session_type: str = Field("mixed", description="definition, exercise or mixed")


class SessionResponse(BaseModel):
    """Response model for a study session."""

    id: int
    domain_id: int
    session_type: str
    start_time: datetime
    end_time: Optional[datetime]
    total_reviews: int
    successful_reviews: int
    duration_seconds: Optional[int]


class PrerequisiteCreateRequest(BaseModel):
    """Request model for creating a prerequisite edge."""

    node_id: int = Field(..., description="Dependent item ID")
    node_type: str = Field(..., description="Dependent item kind")
    prerequisite_id: int = Field(..., description="Prerequisite item ID")
    prerequisite_type: str = Field(..., description="Prerequisite item kind")
    weight: float = Field(1.0, description="Credit multiplier in (0, 1]")
    is_manual: bool = Field(True, description="Created by a person rather than imported")


class PrerequisiteResponse(BaseModel):
    """Response model for a prerequisite edge."""

    id: int
    node_id: int
    node_type: str
    prerequisite_id: int
    prerequisite_type: str
    weight: float
    is_manual: bool


# ========================================
# Review Endpoints
# ========================================


@router.post(
    "/reviews",
    response_model=ReviewSubmitResponse,
    summary="Submit review",
)
def submit_review(
    request: ReviewSubmitRequest,
    user_id: int = Depends(get_user_id),
    service: SRSService = Depends(get_srs_service),
) -> ReviewSubmitResponse:
    """
    Submit an explicit review of a grasped item.

    The review updates the item's SM-2 schedule and propagates partial credit:
    to prerequisites on success, and as negative credit to dependents on failure.
    """
    try:
        outcome = service.submit_review(
            user_id,
            ReviewRequest(
                node_id=request.node_id,
                node_type=request.node_type,
                success=request.success,
                quality=request.quality,
                time_taken=request.time_taken,
                session_id=request.session_id,
            ),
        )
    except SRSError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("Failed to submit review")
        raise HTTPException(status_code=500, detail=str(exc))

    return ReviewSubmitResponse(
        updated_nodes=[ProgressResponse(**p) for p in outcome.updated_progress],
        credit_flow=[CreditFlowItem(**c.to_dict()) for c in outcome.credit_flow],
    )


@router.post(
    "/credit-preview",
    response_model=CreditPreviewResponse,
    summary="Preview credit flow",
)
def preview_credit(
    request: CreditPreviewRequest,
    service: SRSService = Depends(get_srs_service),
) -> CreditPreviewResponse:
    """
    Show the credit a review of an item would propagate through its domain.

    Nothing is persisted.
    """
    try:
        credits = service.preview_credit(
            request.domain_id, request.node_id, request.node_type, request.success
        )
    except SRSError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("Failed to preview credit flow")
        raise HTTPException(status_code=500, detail=str(exc))

    return CreditPreviewResponse(credits=[CreditFlowItem(**c.to_dict()) for c in credits])


@router.put(
    "/status",
    response_model=StatusUpdateResponse,
    summary="Update status",
)
def update_status(
    request: StatusUpdateRequest,
    user_id: int = Depends(get_user_id),
    service: SRSService = Depends(get_srs_service),
) -> StatusUpdateResponse:
    """Set an item's status and cascade it through the prerequisite graph."""
    try:
        changed = service.update_status(user_id, request.node_id, request.node_type, request.status)
    except SRSError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("Failed to update status")
        raise HTTPException(status_code=500, detail=str(exc))

    return StatusUpdateResponse(
        message="Status updated successfully",
        changed_nodes=[ProgressResponse(**p) for p in changed],
    )


@router.get(
    "/domains/{domain_id}/due",
    response_model=DueReviewsResponse,
    summary="Get due reviews",
)
def get_due_reviews(
    domain_id: int,
    review_type: str = Query("mixed", alias="type", description="definition, exercise or mixed"),
    user_id: int = Depends(get_user_id),
    service: SRSService = Depends(get_srs_service),
) -> DueReviewsResponse:
    """Due items of a domain, ordered by how much reviewing them helps other due items."""
    try:
        due = service.get_due_reviews(user_id, domain_id, review_type)
    except SRSError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("Failed to load due reviews")
        raise HTTPException(status_code=500, detail=str(exc))

    return DueReviewsResponse(due_nodes=[DueNode(**d.to_dict()) for d in due])


@router.get(
    "/domains/{domain_id}/progress",
    response_model=list[ProgressResponse],
    summary="Get domain progress",
)
def get_domain_progress(
    domain_id: int,
    user_id: int = Depends(get_user_id),
    service: SRSService = Depends(get_srs_service),
) -> list[ProgressResponse]:
    try:
        entries = service.get_domain_progress(user_id, domain_id)
    except SRSError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("Failed to load domain progress")
        raise HTTPException(status_code=500, detail=str(exc))

    return [ProgressResponse(**e) for e in entries]


@router.get(
    "/history",
    response_model=list[HistoryEntry],
    summary="Get review history",
)
def get_review_history(
    node_id: Optional[int] = Query(None),
    node_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    user_id: int = Depends(get_user_id),
    service: SRSService = Depends(get_srs_service),
) -> list[HistoryEntry]:
    try:
        entries = service.get_review_history(user_id, node_id, node_type, limit)
    except SRSError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("Failed to load review history")
        raise HTTPException(status_code=500, detail=str(exc))

    return [HistoryEntry(**e) for e in entries]


# ========================================
# Session Endpoints
# ========================================


@router.post(
    "/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start study session",
)
def start_session(
    request: SessionStartRequest,
    user_id: int = Depends(get_user_id),
    service: SRSService = Depends(get_srs_service),
) -> SessionResponse:
    try:
        session = service.start_session(user_id, request.domain_id, request.session_type)
    except SRSError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("Failed to start session")
        raise HTTPException(status_code=500, detail=str(exc))

    return SessionResponse(**session)


@router.put(
    "/sessions/{session_id}/end",
    response_model=SessionResponse,
    summary="End study session",
)
def end_session(
    session_id: int,
    user_id: int = Depends(get_user_id),
    service: SRSService = Depends(get_srs_service),
) -> SessionResponse:
    try:
        session = service.end_session(user_id, session_id)
    except SRSError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("Failed to end session")
        raise HTTPException(status_code=500, detail=str(exc))

    return SessionResponse(**session)


@router.get(
    "/sessions",
    response_model=list[SessionResponse],
    summary="List study sessions",
)
def list_sessions(
    limit: int = Query(20, ge=1, le=200),
    user_id: int = Depends(get_user_id),
    service: SRSService = Depends(get_srs_service),
) -> list[SessionResponse]:
    try:
        sessions = service.list_sessions(user_id, limit)
    except SRSError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("Failed to list sessions")
        raise HTTPException(status_code=500, detail=str(exc))

    return [SessionResponse(**s) for s in sessions]


# ========================================
# Prerequisite Endpoints
# ========================================


@router.post(
    "/prerequisites",
    response_model=PrerequisiteResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create prerequisite",
)
def create_prerequisite(
    request: PrerequisiteCreateRequest,
    service: SRSService = Depends(get_srs_service),
) -> PrerequisiteResponse:
    """
    Create a weighted prerequisite edge.

    The weight multiplies credit flowing along the edge, so weaker
    relationships pass on less evidence of mastery.
    """
    logger.info(
        f"Creating prerequisite: {request.prerequisite_type}_{request.prerequisite_id} -> "
        f"{request.node_type}_{request.node_id}"
    )
    try:
        edge = service.create_prerequisite(
            node_id=request.node_id,
            node_type=request.node_type,
            prerequisite_id=request.prerequisite_id,
            prerequisite_type=request.prerequisite_type,
            weight=request.weight,
            is_manual=request.is_manual,
        )
    except SRSError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("Failed to create prerequisite")
        raise HTTPException(status_code=500, detail=str(exc))

    return PrerequisiteResponse(**edge)


@router.get(
    "/domains/{domain_id}/prerequisites",
    response_model=list[PrerequisiteResponse],
    summary="List prerequisites",
)
def list_prerequisites(
    domain_id: int,
    service: SRSService = Depends(get_srs_service),
) -> list[PrerequisiteResponse]:
    try:
        edges = service.list_prerequisites(domain_id)
    except SRSError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("Failed to list prerequisites")
        raise HTTPException(status_code=500, detail=str(exc))

    return [PrerequisiteResponse(**e) for e in edges]


@router.delete(
    "/prerequisites/{prerequisite_id}",
    summary="Delete prerequisite",
)
def delete_prerequisite(
    prerequisite_id: int,
    service: SRSService = Depends(get_srs_service),
) -> dict[str, Any]:
    try:
        service.delete_prerequisite(prerequisite_id)
    except SRSError as exc:
        raise _http_error(exc)
    except Exception as exc:
        logger.exception("Failed to delete prerequisite")
        raise HTTPException(status_code=500, detail=str(exc))

    return {"message": "Prerequisite deleted", "id": prerequisite_id}
